"""
Permissions package.

Defines the closed permission model, the in-memory registry of live
policy, and the evaluator that turns a (service, operation) pair into an
allow/deny decision. Evaluation is pure: no I/O and no cached decisions.
"""
