"""
Persistence package.

Atomic, validated storage of the policy configuration as a JSON file, and
the path checks that keep every storage location inside its base directory.
"""
