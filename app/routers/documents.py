from fastapi import APIRouter, Depends, Response
from fastapi.concurrency import run_in_threadpool

from app.core.logging import get_logger
from app.deps import AuthUser, get_current_user
from app.pdf.builder import render_document
from app.pdf.document_model import EditorDocument
from app.services.dispatcher import header_safe

router = APIRouter()
log = get_logger(__name__)


@router.post("/export")
async def document_export(doc: EditorDocument, user: AuthUser = Depends(get_current_user)):
    """Render the editor document to PDF. Not metered."""
    content = await run_in_threadpool(render_document, doc)
    log.info("document_exported", document_id=doc.id, pages=len(doc.pages))
    filename = header_safe(f"{doc.title or 'document'}.pdf")
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
