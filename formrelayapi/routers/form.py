import io
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, List

import qrcode
import sqlalchemy
from fastapi import APIRouter, Body, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from formrelayapi.config import config
from formrelayapi.database import database, form_table, submission_table
from formrelayapi.models.form import Form, FormIn, FormSummary, PublicForm
from formrelayapi.security import CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter()

NOT_FOUND = "Form not found or access denied"

VALIDATION_MESSAGES = {
    "TITLE_REQUIRED": ("Form title is required", "validation.titleRequired"),
    "TITLE_TOO_LONG": ("Title must be less than 100 characters", "validation.titleTooLong"),
    "FIELDS_REQUIRED": ("At least one field is required to create a form", "validation.fieldsRequired"),
    "FIELD_LABEL_REQUIRED": ("All fields must have a label", "validation.fieldLabelRequired"),
    "EMAIL_INVALID": ("Please enter a valid email address", "validation.emailInvalid"),
}


def validation_code(error: dict) -> str:
    loc = error.get("loc") or ()
    head = loc[0] if loc else None
    if head == "title":
        return "TITLE_TOO_LONG" if error["type"] == "string_too_long" else "TITLE_REQUIRED"
    if head == "fields":
        if "label" in loc:
            return "FIELD_LABEL_REQUIRED"
        if len(loc) == 1:
            return "FIELDS_REQUIRED"
    if head == "emailRecipient":
        return "EMAIL_INVALID"
    return "VALIDATION_ERROR"


def form_validation_error(exc: ValidationError) -> JSONResponse:
    """Report only the first failing rule, with a stable code for client-side localisation."""
    first = exc.errors()[0]
    code = validation_code(first)
    if code in VALIDATION_MESSAGES:
        message, translation_key = VALIDATION_MESSAGES[code]
    else:
        message, translation_key = first.get("msg") or "Invalid form data", "validation.generic"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message, "code": code, "translationKey": translation_key},
    )


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


async def find_owned_form(fid: str, user_id: str):
    if not _is_uuid(fid):
        return None
    query = form_table.select().where(
        (form_table.c.id == fid) & (form_table.c.user_id == user_id)
    )
    return await database.fetch_one(query)


async def find_active_form(fid: str):
    if not _is_uuid(fid):
        return None
    query = form_table.select().where(
        (form_table.c.id == fid) & (form_table.c.is_active == sqlalchemy.true())
    )
    return await database.fetch_one(query)


def public_submit_url(request: Request, fid: str) -> str:
    base = (config.APP_URL or str(request.base_url)).rstrip("/")
    return f"{base}/submit/{fid}"


def _form_values(form: FormIn) -> dict:
    return {
        "title": form.title,
        "description": form.description or None,
        "fields": [f.model_dump(exclude_none=True) for f in form.fields],
        "email_recipient": form.emailRecipient,
        "email_subject": form.emailSubject or None,
    }


@router.get("", response_model=List[FormSummary], status_code=200)
async def list_forms(current_user: CurrentUser):
    query = (
        form_table.select()
        .where(
            (form_table.c.user_id == current_user.id)
            & (form_table.c.is_active == sqlalchemy.true())
        )
        .order_by(form_table.c.created_at.desc())
    )
    forms = await database.fetch_all(query)
    if not forms:
        return []

    count_query = (
        sqlalchemy.select(
            submission_table.c.form_id,
            sqlalchemy.func.count(submission_table.c.id).label("submissions_count"),
        )
        .where(submission_table.c.form_id.in_([f.id for f in forms]))
        .group_by(submission_table.c.form_id)
    )
    counts = {row.form_id: row.submissions_count for row in await database.fetch_all(count_query)}

    return [
        {**dict(f._mapping), "submissions_count": counts.get(f.id, 0)}
        for f in forms
    ]


@router.post("", status_code=200)
async def create_form(current_user: CurrentUser, payload: Any = Body(...)):
    try:
        form = FormIn.model_validate(payload)
    except ValidationError as e:
        return form_validation_error(e)

    now = datetime.now(timezone.utc)
    fid = str(uuid.uuid4())
    query = form_table.insert().values(
        id=fid,
        user_id=current_user.id,
        is_active=True,
        created_at=now,
        updated_at=now,
        **_form_values(form),
    )
    try:
        await database.execute(query)
    except Exception as e:
        logger.exception(f"Database error creating form: {e}")
        raise HTTPException(status_code=500, detail="Failed to create form")

    logger.info(f"Form {fid} created by {current_user.id}")
    return {"id": fid, "message": "Form created successfully"}


@router.get("/{fid}", response_model=Form, status_code=200)
async def get_form(fid: str, current_user: CurrentUser):
    form = await find_owned_form(fid, current_user.id)
    if not form:
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return dict(form._mapping)


@router.put("/{fid}", status_code=200)
async def update_form(fid: str, current_user: CurrentUser, payload: Any = Body(...)):
    if not await find_owned_form(fid, current_user.id):
        raise HTTPException(status_code=404, detail=NOT_FOUND)

    try:
        form = FormIn.model_validate(payload)
    except ValidationError as e:
        return form_validation_error(e)

    query = (
        form_table.update()
        .where((form_table.c.id == fid) & (form_table.c.user_id == current_user.id))
        .values(updated_at=datetime.now(timezone.utc), **_form_values(form))
    )
    try:
        await database.execute(query)
    except Exception as e:
        logger.exception(f"Database error updating form {fid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update form")

    return {"id": fid, "message": "Form updated successfully"}


@router.delete("/{fid}", status_code=200)
async def delete_form(fid: str, current_user: CurrentUser):
    if not await find_owned_form(fid, current_user.id):
        raise HTTPException(status_code=404, detail=NOT_FOUND)

    # Children first, one statement each; a failure leaves the form in place to retry.
    try:
        await database.execute(submission_table.delete().where(submission_table.c.form_id == fid))
        await database.execute(
            form_table.delete().where(
                (form_table.c.id == fid) & (form_table.c.user_id == current_user.id)
            )
        )
    except Exception as e:
        logger.exception(f"Database error deleting form {fid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete form")

    return {"message": "Form deleted successfully"}


@router.get("/{fid}/public", response_model=PublicForm, status_code=200)
async def get_public_form(fid: str):
    form = await find_active_form(fid)
    if not form:
        raise HTTPException(status_code=404, detail="Form not found or inactive")
    return dict(form._mapping)


@router.get("/{fid}/qr", status_code=200)
async def get_form_qr(fid: str, request: Request, current_user: CurrentUser):
    if not await find_owned_form(fid, current_user.id):
        raise HTTPException(status_code=404, detail=NOT_FOUND)

    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(public_submit_url(request, fid))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return Response(content=buffer.getvalue(), media_type="image/png")
