"""
Policy Service application package.

- app.permissions: policy models, the registry, and the evaluator.
- app.persistence: storage path validation and the config store.
- app.audit: append-only audit trail with rotation.
- app.interception: operation mapping, request interceptor, resolver guard.
- app.admin: administrative operations (mutate, persist, audit).
- app.core: startup assembly of the components above.
- app.main: HTTP surface.

Guidelines:
- Every authorization error resolves to deny.
- Only the admin handler mutates policy; it persists before committing.
- Components receive their collaborators explicitly; there are no globals.
"""
