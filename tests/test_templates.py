import io

from pypdf import PdfReader

from app.models.audit_log import AuditLog
from app.models.pdf_template import PdfTemplate
from app.services import templates as templates_service
from conftest import USER_ID, auth_headers

NDA_VALUES = {
    "party_a_name": "Acme Corp",
    "party_a_address": "1 Main St\nSpringfield",
    "party_b_name": "Globex",
    "party_b_address": "9 Elm Rd",
    "effective_date": "2026-01-05",
    "term_years": 2,
    "governing_law": "Delaware",
}

CUSTOM = {
    "name": "Visitor Pass",
    "category": "business",
    "subcategory": "Letterheads",
    "description": "Front desk visitor badge",
    "fields": [
        {"name": "visitor", "label": "Visitor", "required": True},
        {"name": "host", "label": "Host"},
    ],
    "template_data": {
        "title": "Visitor Pass",
        "pages": [
            {"elements": [{"id": "v", "type": "text", "content": "Welcome {{ visitor }}, meeting {{host}}", "x": 72, "y": 72}]}
        ],
    },
    "public": True,
}


def _text(content: bytes) -> str:
    return "\n".join(p.extract_text() for p in PdfReader(io.BytesIO(content)).pages)


async def test_categories(client):
    r = await client.get("/v1/templates/categories")
    assert r.status_code == 200
    ids = [c["id"] for c in r.json()["categories"]]
    assert len(ids) == 9
    assert "real-estate" in ids


async def test_list_builtins_and_filters(client):
    r = await client.get("/v1/templates")
    assert r.json()["total"] == len(templates_service.BUILT_IN_TEMPLATES)

    r = await client.get("/v1/templates", params={"category": "legal"})
    assert [t["id"] for t in r.json()["templates"]] == ["nda-mutual"]

    r = await client.get("/v1/templates", params={"premium": "true"})
    assert {t["id"] for t in r.json()["templates"]} == {"employment-offer", "lease-residential"}

    r = await client.get("/v1/templates", params={"search": "ITEMIZED"})
    assert [t["id"] for t in r.json()["templates"]] == ["invoice-detailed"]

    r = await client.get("/v1/templates", params={"category": "personal", "subcategory": "Resumes", "premium": "false"})
    assert [t["id"] for t in r.json()["templates"]] == ["resume-modern"]


async def test_get_template(client):
    r = await client.get("/v1/templates/nda-mutual")
    assert r.status_code == 200
    template = r.json()["template"]
    assert template["builtIn"] is True
    assert template["fields"][0]["name"] == "party_a_name"

    assert (await client.get("/v1/templates/no-such-template")).status_code == 404
    assert (await client.get("/v1/templates/65a1b2c3d4e5f60718293a4b")).status_code == 404


async def test_create_requires_auth_and_known_category(client):
    r = await client.post("/v1/templates", json=CUSTOM)
    assert r.status_code == 401
    r = await client.post("/v1/templates", json={**CUSTOM, "category": "astrology"}, headers=auth_headers())
    assert r.status_code == 422


async def test_create_rejects_bad_layout(client):
    body = {**CUSTOM, "template_data": {"pages": []}}
    r = await client.post("/v1/templates", json=body, headers=auth_headers())
    assert r.status_code == 422


async def test_public_template_is_listed(client):
    r = await client.post("/v1/templates", json=CUSTOM, headers=auth_headers())
    assert r.status_code == 200
    created = r.json()["template"]
    assert created["ownerId"] == USER_ID
    assert created["hasLayout"] is True

    r = await client.get("/v1/templates", params={"category": "business"})
    ids = [t["id"] for t in r.json()["templates"]]
    assert ids == ["proposal-professional", created["id"]]


async def test_private_template_visible_to_owner_only(client):
    r = await client.post("/v1/templates", json={**CUSTOM, "public": False}, headers=auth_headers())
    template_id = r.json()["template"]["id"]

    assert template_id not in [t["id"] for t in (await client.get("/v1/templates")).json()["templates"]]
    assert (await client.get(f"/v1/templates/{template_id}")).status_code == 404
    assert (await client.get(f"/v1/templates/{template_id}", headers=auth_headers("someone-else"))).status_code == 404
    r = await client.get(f"/v1/templates/{template_id}", headers=auth_headers())
    assert r.status_code == 200


async def test_duplicate_builtin(client):
    r = await client.post("/v1/templates/invoice-detailed/duplicate", headers=auth_headers())
    assert r.status_code == 200
    copy = r.json()["template"]
    assert copy["name"] == "Detailed Invoice (Copy)"
    assert copy["public"] is False
    assert copy["builtIn"] is False
    assert len(copy["fields"]) == 12

    r = await client.post(
        "/v1/templates/invoice-detailed/duplicate", json={"new_name": "Studio invoice"}, headers=auth_headers()
    )
    assert r.json()["template"]["name"] == "Studio invoice"


async def test_generate_requires_fields(client):
    r = await client.post(
        "/v1/templates/nda-mutual/generate",
        json={"field_values": {"party_a_name": "Acme Corp"}},
        headers=auth_headers(),
    )
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["error"].startswith("Missing required fields: Party A Address")
    assert "Term (Years)" in body["missing"]


async def test_generate_builtin(client):
    r = await client.post(
        "/v1/templates/nda-mutual/generate",
        json={"field_values": NDA_VALUES},
        headers=auth_headers(),
    )
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.headers["content-disposition"] == 'attachment; filename="Mutual NDA.pdf"'
    text = _text(r.content)
    assert "Mutual NDA" in text
    assert "Acme Corp" in text
    assert "Delaware" in text
    assert await AuditLog.find(AuditLog.event_type == "template_generated").count() == 1


async def test_generate_fills_layout_and_counts_downloads(client):
    r = await client.post("/v1/templates", json=CUSTOM, headers=auth_headers())
    template_id = r.json()["template"]["id"]

    r = await client.post(
        f"/v1/templates/{template_id}/generate",
        json={"field_values": {"visitor": "Ada", "host": "Grace"}},
        headers=auth_headers("another-user"),
    )
    assert r.status_code == 200
    assert "Welcome Ada, meeting Grace" in _text(r.content)
    stored = await PdfTemplate.get(template_id)
    assert stored.downloads == 1


def test_format_value():
    assert templates_service.format_value(["python", "sql"]) == "python, sql"
    assert templates_service.format_value([{"item": "Design", "amount": 400}]) == "item: Design; amount: 400"
    assert templates_service.format_value(True) == "Yes"
    assert templates_service.format_value(None) == ""
