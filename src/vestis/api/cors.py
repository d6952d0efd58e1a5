"""Permissive cross-origin headers for every response.

Clients of this API expect these exact headers on success and error
responses alike, and a 204 answer to any OPTIONS request, whether or not it
carries the usual preflight request headers.
"""

from fastapi import FastAPI, Request, Response

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Max-Age": "86400",
}


def install_cors(app: FastAPI) -> None:
    """Answer preflight requests and annotate all responses with CORS_HEADERS."""

    @app.middleware("http")
    async def cors_headers(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)

        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response
