"""Request-scoped dependencies for the v1 API."""

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Mapping, Optional, Protocol

from fastapi import Depends, Request

from areacms.core.config import Settings
from areacms.core.errors import Unauthorized
from areacms.uploads.form_decoder import FormDecoder
from areacms.uploads.pipeline import UploadPipeline
from areacms.uploads.sources import DecodedForm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller; every write is scoped to ``project_id``."""

    user_id: str
    project_id: int


class TokenResolver(Protocol):
    async def resolve(self, token: str) -> Optional[Principal]:
        ...


class StaticTokenResolver:
    """Resolves bearer tokens from a fixed table, for local development and tests."""

    def __init__(self, tokens: Mapping[str, tuple[str, int]]):
        self._tokens = dict(tokens)

    @classmethod
    def from_settings(cls, settings: Settings) -> "StaticTokenResolver":
        return cls(settings.static_api_tokens)

    async def resolve(self, token: str) -> Optional[Principal]:
        entry = self._tokens.get(token)
        if entry is None:
            return None
        user_id, project_id = entry
        return Principal(user_id=user_id, project_id=project_id)


def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization")
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_principal(request: Request) -> Principal:
    """Resolve the bearer token into a principal.

    Raises:
        Unauthorized: If the header is missing or the token is unknown
    """
    token = _bearer_token(request)
    if token is None:
        raise Unauthorized("Missing bearer token")

    resolver: TokenResolver = request.app.state.token_resolver
    principal = await resolver.resolve(token)
    if principal is None:
        logger.warning("Rejected bearer token", extra={"path": request.url.path})
        raise Unauthorized("Invalid bearer token")
    return principal


def get_pipeline(request: Request) -> UploadPipeline:
    return request.app.state.pipeline


def get_form_decoder(request: Request) -> FormDecoder:
    return request.app.state.form_decoder


def get_streaming_threshold(request: Request) -> int:
    return request.app.state.streaming_threshold_bytes


async def decode_form(
    request: Request,
    decoder: FormDecoder = Depends(get_form_decoder),
    streaming_threshold: int = Depends(get_streaming_threshold),
) -> AsyncIterator[DecodedForm]:
    """Decode the multipart body, buffered for small requests and spooled otherwise.

    Bodies without a Content-Length are always streamed. File parts the
    handler did not consume are released once the request finishes.
    """
    content_type = request.headers.get("content-type")
    content_length = request.headers.get("content-length")

    if content_length is not None and content_length.isdigit() and int(content_length) <= streaming_threshold:
        form = decoder.decode(content_type, await request.body())
    else:
        logger.debug(
            "Decoding multipart body in streaming mode",
            extra={"content_length": content_length, "path": request.url.path},
        )
        form = await decoder.decode_stream(content_type, request.stream())

    try:
        yield form
    finally:
        form.close()

