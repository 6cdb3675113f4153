"""
Interception package.

Maps inbound operations to (service, operation) pairs through a closed
table and enforces the decision before any resolver runs. Resolvers use
the guard in this package to repeat the check on their side.
"""
