"""auth/ -- The trust-decision components and the pipeline that ties them together.

CredentialVault (passwords), TokenIssuer (tokens), DeviceFingerprinter
(fingerprint), HoneypotGuard (honeypot), AnomalyScorer (anomaly) and the
AuthService orchestrator (service).

Layer rule: auth/ imports from core/ and store.base only.
It does NOT import from api/. api/ imports from auth/, not the other way around.
auth/dependencies.py is the one FastAPI-aware module here.
"""
