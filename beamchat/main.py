import logging
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request, status

from beamchat.container import ServiceContainer, build_container
from beamchat.domain.errors import ErrorKind, Result
from beamchat.schemas import (
    AddContactRequest,
    MessageView,
    RegisterRequest,
    SendMessageRequest,
    SessionResponse,
    ThreadResponse,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SELF_ADD: status.HTTP_400_BAD_REQUEST,
    ErrorKind.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.DUPLICATE_PHONE: status.HTTP_409_CONFLICT,
    ErrorKind.DUPLICATE_NICKNAME: status.HTTP_409_CONFLICT,
    ErrorKind.DUPLICATE_CONTACT: status.HTTP_409_CONFLICT,
}


@asynccontextmanager
async def lifespan(_app: FastAPI):  # type: ignore[no-untyped-def]
    yield
    _app.state.container.chat_session.close()


app = FastAPI(title="BeamChat", version="0.1.0", lifespan=lifespan)
app.state.container = build_container()


@app.middleware("http")
async def attach_trace_id(request: Request, call_next):  # type: ignore[no-untyped-def]
    trace_id = request.headers.get("x-trace-id") or str(uuid4())
    request.state.trace_id = trace_id
    response = await call_next(request)
    response.headers["x-trace-id"] = trace_id
    return response


def _get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def _raise_for_result(result: Result, *, trace_id: str) -> None:
    if result.success:
        return
    kind = result.error_kind or ErrorKind.VALIDATION
    logger.info("request_rejected trace_id=%s error_kind=%s", trace_id, kind)
    raise HTTPException(
        status_code=_ERROR_STATUS.get(kind, status.HTTP_400_BAD_REQUEST),
        detail={"error_kind": kind.value, "message": result.error},
    )


def _session_response(container: ServiceContainer) -> SessionResponse:
    return SessionResponse.from_snapshot(container.chat_session.snapshot())


@app.get("/healthz")
def healthz(request: Request) -> dict[str, object]:
    container = _get_container(request)
    return {
        "status": "ok",
        "service": "beamchat",
        "storage": container.storage_diagnostics(),
    }


@app.get("/api/v1/session", response_model=SessionResponse)
def get_session(request: Request) -> SessionResponse:
    return _session_response(_get_container(request))


@app.post("/api/v1/register", response_model=SessionResponse)
def register(req: RegisterRequest, request: Request) -> SessionResponse:
    container = _get_container(request)
    result = container.chat_session.register(req.nickname, req.phone)
    _raise_for_result(result, trace_id=request.state.trace_id)
    return _session_response(container)


@app.post("/api/v1/contacts", response_model=SessionResponse)
def add_contact(req: AddContactRequest, request: Request) -> SessionResponse:
    container = _get_container(request)
    result = container.chat_session.add_contact(req.nickname, req.phone)
    _raise_for_result(result, trace_id=request.state.trace_id)
    return _session_response(container)


@app.post("/api/v1/chats/close", response_model=SessionResponse)
def close_chat(request: Request) -> SessionResponse:
    container = _get_container(request)
    container.chat_session.close_chat()
    return _session_response(container)


@app.post("/api/v1/chats/{contact_phone}/open", response_model=SessionResponse)
def open_chat(contact_phone: str, request: Request) -> SessionResponse:
    container = _get_container(request)
    result = container.chat_session.open_chat(contact_phone)
    _raise_for_result(result, trace_id=request.state.trace_id)
    return _session_response(container)


@app.get("/api/v1/chats/{contact_phone}/messages", response_model=ThreadResponse)
def get_messages(contact_phone: str, request: Request) -> ThreadResponse:
    container = _get_container(request)
    messages = container.chat_session.get_chat_messages(contact_phone)
    return ThreadResponse(
        contact_phone=contact_phone,
        messages=[MessageView.from_message(message) for message in messages],
    )


@app.post("/api/v1/chats/{contact_phone}/messages", response_model=ThreadResponse)
def send_message(contact_phone: str, req: SendMessageRequest, request: Request) -> ThreadResponse:
    container = _get_container(request)
    if container.chat_session.current_user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No active session.",
        )
    container.chat_session.send_message(contact_phone, req.text)
    return get_messages(contact_phone, request)


@app.post("/api/v1/logout", response_model=SessionResponse)
def logout(request: Request) -> SessionResponse:
    container = _get_container(request)
    container.chat_session.logout()
    return _session_response(container)
