import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Body, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from formrelayapi.database import database, submission_table
from formrelayapi.emailing import render_submission_email, send_email
from formrelayapi.i18n import get_translation
from formrelayapi.models.form import (
    FormField,
    SubmissionIn,
    UploadedFileMeta,
    missing_required_labels,
    project_values,
)
from formrelayapi.ratelimit import get_client_ip
from formrelayapi.routers.form import find_active_form
from formrelayapi.storage import download_file, remove_files

logger = logging.getLogger(__name__)
router = APIRouter()

EMAIL_WARNING = "Email notification could not be sent"


async def collect_attachments(
    file_paths: List[str], file_metadata: Dict[str, List[UploadedFileMeta]]
) -> List[dict]:
    """Download the uploaded files; any file that cannot be fetched is skipped."""
    original_names = {
        meta.path: meta.originalFileName
        for metas in file_metadata.values()
        for meta in metas
    }
    attachments = []
    for path in file_paths:
        try:
            content = await run_in_threadpool(download_file, path)
        except Exception as e:
            logger.error(f"Error downloading file {path}: {e}")
            continue
        attachments.append(
            {
                "filename": original_names.get(path) or path.split("/")[-1] or "attachment",
                "content": content,
            }
        )
    return attachments


@router.post("", status_code=200)
async def submit_form(request: Request, payload: Any = Body(...)):
    try:
        submission = SubmissionIn.model_validate(payload)
    except ValidationError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request data", "details": e.errors(include_url=False, include_context=False)},
        )

    form = await find_active_form(submission.formId)
    if not form:
        raise HTTPException(status_code=404, detail="Form not found or inactive")

    fields = [FormField.model_validate(f) for f in form.fields]
    values = project_values(fields, submission.data)
    missing = missing_required_labels(values)
    if missing:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing required fields", "missingFields": missing},
        )

    submission_id = str(uuid.uuid4())
    submitted_at = datetime.now(timezone.utc)
    query = submission_table.insert().values(
        id=submission_id,
        form_id=form.id,
        data=submission.data,
        files=submission.filePaths,
        ip_address=get_client_ip(request),
        created_at=submitted_at,
    )
    try:
        await database.execute(query)
    except Exception as e:
        logger.exception(f"Error saving submission for form {form.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to save submission")

    attachments = await collect_attachments(submission.filePaths, submission.fileMetadata)

    t = get_translation(submission.language)
    try:
        html = render_submission_email(
            form_title=form.title,
            form_description=form.description,
            values=values,
            submitted_at=submitted_at,
            language=submission.language,
            file_metadata=submission.fileMetadata,
        )
        await send_email(
            to=form.email_recipient,
            subject=form.email_subject or f"New Form Submission: {form.title}",
            html=html,
            from_name=t("app.name"),
            attachments=attachments,
        )
    except Exception as e:
        logger.error(f"Error sending email for submission {submission_id}: {e}")
        return {
            "success": True,
            "submissionId": submission_id,
            "message": "Form submitted successfully, but email notification failed",
            "warning": EMAIL_WARNING,
        }

    if submission.filePaths:
        try:
            await run_in_threadpool(remove_files, submission.filePaths)
        except Exception as e:
            logger.error(f"Error during file cleanup for submission {submission_id}: {e}")

    return {
        "success": True,
        "submissionId": submission_id,
        "message": "Form submitted successfully",
    }
