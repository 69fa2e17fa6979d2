from contextvars import ContextVar

actor_email_ctx: ContextVar[str | None] = ContextVar("actor_email_ctx", default=None)
