"""
Freya Framework - Hello World sample

This demonstrates the basic usage of the Freya micro web framework.
Run with: uvicorn sample:app --reload
"""


import logging

from freya import Freya, Request, Response
from freya.auth import AuthMiddleware, JWTAuthBackend, require_auth, require_scopes
from freya.cookies import CookieOptions
from freya.exceptions import BadRequest, Unauthorized
from freya.middleware import (
    BodyParserMiddleware,
    CORSMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from freya.session import SessionMiddleware
from freya.types import Next
from freya.validation import Schema, validate_body

# =============================================================================
# Application Setup
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
)
logger = logging.getLogger("freya.sample")

SECRET_KEY = "change-me-to-a-long-random-value"

app: Freya = Freya(debug=True, secret_key=SECRET_KEY)
jwt_backend = JWTAuthBackend(secret_key=SECRET_KEY)

# Middleware runs in registration order
app.use(RequestIdMiddleware())
app.use(RequestLoggingMiddleware(format="dev"))
app.use(SecurityHeadersMiddleware())
app.use(CORSMiddleware(allow_origins=["*"], allow_methods=["GET", "POST", "PUT", "DELETE"]))
app.use(BodyParserMiddleware())
app.use(SessionMiddleware(secret_key=SECRET_KEY))
app.use(AuthMiddleware(jwt_backend))

# =============================================================================
# Lifespan Events (Database initialization example)
# =============================================================================


@app.on_startup
async def startup() -> None:
    """Initialize resources on application startup."""
    logger.info("Freya is starting up...")
    # app.state["db"] = await create_database_pool()
    app.state["db"] = {"connected": True}  # Placeholder
    logger.info("Database connected")


@app.on_shutdown
async def shutdown() -> None:
    logger.info("Freya is shutting down...")
    app.state["db"] = None


# =============================================================================
# Routes - Hello World
# =============================================================================

LoginSchema = Schema.from_fields("Login", username=(str, ...), password=(str, ...))


@app.post("/login")
def login(request: Request, response: Response, next: Next) -> None:
    data = request.validate(LoginSchema)

    # In a real application, verify credentials against a database
    if data["username"] != "admin" or data["password"] != "password":
        raise Unauthorized("Invalid credentials")

    token = jwt_backend.create_token("1", username=data["username"], scopes=["read"])
    response.json({"token": token})


@app.get("/protected", require_auth())
def protected(request: Request, response: Response, next: Next) -> dict:
    return {"user": request.user.username}


@app.get("/reports", require_scopes("read"))
def reports(request: Request, response: Response, next: Next) -> dict:
    return {"reports": []}


@app.get("/")
def hello_world(request: Request, response: Response, next: Next) -> dict:
    """
    Hello World endpoint.

    Returns a JSON greeting message.
    """
    return {"message": "Hello, World! Welcome to Freya", "framework": "Freya"}


@app.get("/health")
def health_check(request: Request, response: Response, next: Next) -> dict:
    db_status = app.state.get("db") or {}
    return {
        "status": "healthy",
        "database": "connected" if db_status.get("connected") else "disconnected",
    }


# =============================================================================
# Routes - Path Parameters, Body & Query
# =============================================================================


@app.get("/users/:user_id")
def get_user(request: Request, response: Response, next: Next) -> dict:
    user_id = request.params["user_id"]
    return {"user_id": user_id, "username": f"user_{user_id}"}


@app.get("/files/*")
def get_file(request: Request, response: Response, next: Next) -> dict:
    return {"path": request.params["*"]}


NewUserSchema = Schema.from_fields("NewUser", username=(str, ...), email=(str, ...))


@app.post("/users", validate_body(NewUserSchema))
def create_user(request: Request, response: Response, next: Next) -> None:
    user = request.state["validated"]["body"]
    response.status(201).json({"message": "User created successfully", "user": user})


@app.get("/search")
def search(request: Request, response: Response, next: Next) -> dict:
    page = int(request.get_query("page", "1") or "1")
    return {"query": request.get_query("q", ""), "page": page, "results": []}


# =============================================================================
# Routes - Sessions & Cookies
# =============================================================================


@app.get("/session")
def get_session(request: Request, response: Response, next: Next) -> dict:
    session = request.session
    session["visits"] = session.get("visits", 0) + 1
    return {"session_data": dict(session)}


@app.get("/cookie-demo")
def cookie_demo(request: Request, response: Response, next: Next) -> None:
    response.set_cookie("demo_cookie", "hello_freya", CookieOptions(max_age=3600))
    response.json({"message": "Cookie set!", "cookies_received": dict(request.cookies)})


# =============================================================================
# Routes - Error Handling
# =============================================================================


@app.get("/error")
def trigger_error(request: Request, response: Response, next: Next) -> None:
    raise BadRequest("This is a demonstration error")


# =============================================================================
# Router Example - API v1
# =============================================================================

api_v1 = app.router()


@api_v1.get("/info")
def api_info(request: Request, response: Response, next: Next) -> dict:
    return {"api_version": "0.1.0", "framework": "Freya"}


@api_v1.get("/products")
def list_products(request: Request, response: Response, next: Next) -> dict:
    return {
        "products": [
            {"id": 1, "name": "Brisingamen", "price": 999.99},
            {"id": 2, "name": "Falcon Cloak", "price": 1299.99},
        ],
    }


app.mount("/api/v1", api_v1)


# =============================================================================
# Main Entry Point
# =============================================================================


def main() -> None:
    """Run the Freya application."""
    app.run(
        on_listen=lambda host, port: logger.info("Listening on http://%s:%d", host, port),
        log_level="info",
    )


if __name__ == "__main__":
    main()
