"""Responses the proxy synthesizes without contacting an upstream."""

from fastapi.responses import JSONResponse, Response

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS, HEAD",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

HEALTH_BODY = {"status": "ok", "message": "SSL proxy is running"}

UPSTREAM_UNAVAILABLE_BODY = {
    "error": "upstream server unavailable",
    "message": "This is expected in testing environment",
}

# Not sent on the wire; recorded when the caller went away mid-request
CLIENT_CLOSED_REQUEST = 499


def apply_cors(response: Response) -> Response:
    for name, value in CORS_HEADERS.items():
        response.headers[name] = value
    return response


def preflight_response() -> Response:
    return apply_cors(Response(status_code=200))


def health_response() -> Response:
    return apply_cors(JSONResponse(status_code=200, content=HEALTH_BODY))


def upstream_unavailable_response() -> Response:
    return apply_cors(JSONResponse(status_code=502, content=UPSTREAM_UNAVAILABLE_BODY))


def client_closed_response() -> Response:
    return Response(status_code=CLIENT_CLOSED_REQUEST)
