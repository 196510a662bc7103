"""Request pipeline for metered operations.

resolve -> authenticate -> read and validate input -> credit pre-check ->
transform (bounded by a timeout, never charged on failure) -> settle -> respond.
"""

import asyncio
import inspect
import json

from fastapi import Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import ORJSONResponse
from pypdf.errors import PyPdfError
from starlette.datastructures import UploadFile

from app.core.audit import client_metadata
from app.core.config import get_settings
from app.core.exceptions import (
    AppError,
    InsufficientCreditsError,
    LedgerInconsistencyError,
    OperationTimeoutError,
    PayloadTooLargeError,
    TransformError,
    ValidationError,
)
from app.core.logging import get_logger
from app.deps import AuthUser, get_current_user
from app.services import credits as credits_service
from app.services import registry
from app.services.handlers import OperationRequest, OperationResult, Parsed, Upload
from app.services.registry import OperationDescriptor

log = get_logger(__name__)

FILE_FIELDS = ("file", "files", "files[]")


def _too_large(size: int, limit: int) -> PayloadTooLargeError:
    return PayloadTooLargeError(
        f"Upload exceeds the {limit // (1024 * 1024)} MB limit",
        details={"maxBytes": limit, "receivedBytes": size},
    )


async def read_operation_request(request: Request, user: AuthUser) -> OperationRequest:
    """Collect uploads and string fields from a multipart, urlencoded or JSON body."""
    limit = get_settings().max_upload_bytes
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise _too_large(int(declared), limit)

    files: list[Upload] = []
    fields: dict[str, str] = {}
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as e:
            raise ValidationError("Request body is not valid JSON") from e
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        fields = {k: v if isinstance(v, str) else json.dumps(v) for k, v in body.items() if v is not None}
    elif content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        try:
            total = 0
            for key, value in form.multi_items():
                if isinstance(value, UploadFile):
                    if key not in FILE_FIELDS:
                        continue
                    data = await value.read()
                    total += len(data)
                    if total > limit:
                        raise _too_large(total, limit)
                    files.append(Upload(filename=value.filename or "document.pdf", content=data))
                else:
                    fields[key] = value
        finally:
            await form.close()
    return OperationRequest(user=user, files=files, fields=fields, client=client_metadata(request))


async def execute(descriptor: OperationDescriptor, parsed: Parsed) -> OperationResult:
    """Run the transform under the configured timeout; failures surface as AppErrors."""
    timeout = get_settings().operation_timeout_seconds
    if inspect.iscoroutinefunction(descriptor.run):
        work = descriptor.run(parsed)
    else:
        work = run_in_threadpool(descriptor.run, parsed)
    try:
        return await asyncio.wait_for(work, timeout)
    except asyncio.TimeoutError:
        log.warning("operation_timeout", operation=descriptor.name, timeout_seconds=timeout)
        raise OperationTimeoutError(details={"operation": descriptor.name, "timeoutSeconds": timeout}) from None
    except AppError:
        raise
    except PyPdfError as e:
        raise TransformError(f"Could not process PDF: {e}") from e
    except Exception as e:
        log.exception("operation_failed", operation=descriptor.name)
        raise TransformError(f"{descriptor.name} failed", client_error=False) from e


def header_safe(value: str) -> str:
    """HTTP headers are latin-1; replace anything else and strip control characters."""
    cleaned = "".join(ch for ch in value if ch >= " " and ch != "\x7f").replace('"', "'")
    return cleaned.encode("latin-1", "replace").decode("latin-1")


def shape_response(
    descriptor: OperationDescriptor,
    result: OperationResult,
    remaining: int | None,
    extra_headers: dict[str, str] | None = None,
) -> Response:
    headers = {
        "X-Operation": descriptor.name,
        "X-Credits-Used": str(descriptor.cost),
        "X-Message": header_safe(result.message),
        **result.headers,
        **(extra_headers or {}),
    }
    if remaining is not None and remaining >= 0:
        headers["X-Credits-Remaining"] = str(remaining)
    if result.content is not None:
        filename = header_safe(result.filename or f"{descriptor.name}.pdf")
        headers["Content-Disposition"] = f'attachment; filename="{filename}"'
        return Response(content=result.content, media_type=result.media_type, headers=headers)
    return ORJSONResponse(
        {"success": True, "data": result.data, "message": result.message, "creditsUsed": descriptor.cost},
        headers=headers,
    )


async def dispatch(name: str | None, request: Request) -> Response:
    descriptor = registry.resolve(name)
    user = await get_current_user(request)
    parsed = descriptor.parse(await read_operation_request(request, user))

    check = await credits_service.check_sufficient(user.id, descriptor.cost)
    if not check.sufficient:
        raise InsufficientCreditsError(descriptor.cost, check.current, descriptor.name)

    result = await execute(descriptor, parsed)

    subject = parsed.request.files[0].filename if parsed.request.files else descriptor.name
    settled = await credits_service.settle(
        user.id,
        descriptor.cost,
        f"PDF {descriptor.name}: {subject}",
        reference_type="operation",
        reference_id=descriptor.name,
    )
    extra: dict[str, str] = {}
    if not settled.success:
        policy = get_settings().settle_failure_policy
        log.error(
            "settle_failed",
            operation=descriptor.name,
            error=settled.error,
            compensated=settled.compensated,
            policy=policy,
        )
        if policy == "strict":
            if settled.error == credits_service.INSUFFICIENT_CREDITS:
                raise InsufficientCreditsError(descriptor.cost, settled.remaining, descriptor.name)
            raise LedgerInconsistencyError(details={"operation": descriptor.name, "compensated": settled.compensated})
        extra["X-Credits-Settled"] = "false"

    if result.commit is not None:
        try:
            await result.commit()
        except Exception:
            log.error("operation_commit_failed", operation=descriptor.name, settled=settled.success)
            if settled.success:
                await credits_service.refund(
                    user.id,
                    descriptor.cost,
                    f"Refund PDF {descriptor.name}: {subject}",
                    reference_id=descriptor.name,
                )
            raise
    log.info(
        "operation_completed",
        operation=descriptor.name,
        cost=descriptor.cost,
        settled=settled.success,
        remaining=settled.remaining,
    )
    return shape_response(descriptor, result, settled.remaining, extra)
