# HTTP layer for the authorization server.
# Created: 2026-02-20
#
# FastAPI routers for the OAuth endpoints and discovery documents, plus the
# bearer-token dependencies that protect the resource API.
