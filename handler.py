"""AWS Lambda handler via Mangum.

Wraps the FastAPI app for API Gateway (v2 HTTP API) events.
The app and Mangum adapter are created at module level so they persist
across warm Lambda invocations.

Environment variables (required):
    SESSION_SECRET

Environment variables (recommended for Lambda):
    SESSION_BACKEND=dynamodb (or redis with REDIS_URL)
    SESSION_HTTPS_ONLY=true
    DYNAMODB_TABLE=auth_sessions

The in-memory backend does not survive across Lambda instances; the
storage adapter is chosen from SESSION_BACKEND by ``create_app``.
"""

from mangum import Mangum

from authsession.main import create_app

app = create_app()

handler = Mangum(app, lifespan="auto")
