"""
HTTP tests for the public and admin pre-registration endpoints.

Services run against the in-memory store; only the dependency functions
are overridden.
"""

import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from iep_api.core import rate_limit
from iep_api.core.email import get_email_sender
from iep_api.core.redis import get_redis
from iep_api.core.security import create_access_token
from iep_api.main import app
from iep_api.modules.pre_registrations.dependencies import get_clock, get_record_store
from iep_api.modules.pre_registrations.models import RegistrationStatus

PUBLIC = "/api/v1/pre-registrations"
ADMIN = "/api/v1/pre-registrations/admin"


@pytest.fixture(autouse=True)
def reset_rate_limits():
    rate_limit._memory_windows.clear()
    yield
    rate_limit._memory_windows.clear()


@pytest.fixture
def client(store, clock, email_sender, mock_redis):
    app.dependency_overrides[get_record_store] = lambda: store
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_redis] = lambda: mock_redis
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    token = create_access_token(
        "admin-1", {"email": "admin@iepperuanochino.edu.pe", "role": "admin"}
    )
    return {"Authorization": f"Bearer {token}"}


def _complete(client, **overrides):
    body = {
        "codigo_estudiante": "20-45678912-X",
        "dni": "45678912",
        "email": "Juan.Perez@gmail.com",
        "password": "clave-segura-1",
        "telefono": "987654789",
        "sexo": "M",
    }
    body.update(overrides)
    return client.post(f"{PUBLIC}/complete", json=body)


class TestValidateEndpoint:
    """POST /pre-registrations/validate"""

    def test_valid_code(self, client, record):
        response = client.post(
            f"{PUBLIC}/validate",
            json={"codigo_estudiante": "20-45678912-x", "dni": "45678912"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["nombre"] == "Juan"
        assert data["codigo_estudiante"] == "20-45678912-X"
        assert data["estado"] == "pendiente"

    def test_tampered_code(self, client):
        response = client.post(
            f"{PUBLIC}/validate",
            json={"codigo_estudiante": "20456789121", "dni": "45678912"},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "TAMPERED_CODE"

    def test_unknown_record(self, client):
        response = client.post(
            f"{PUBLIC}/validate",
            json={"codigo_estudiante": "20123456786", "dni": "12345678"},
        )

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NOT_FOUND"

    def test_expired(self, client, record, clock):
        clock.advance(days=31)

        response = client.post(
            f"{PUBLIC}/validate",
            json={"codigo_estudiante": "2045678912X", "dni": "45678912"},
        )

        assert response.status_code == 410
        assert response.json()["detail"]["error"] == "REGISTRATION_EXPIRED"

    def test_malformed_dni_rejected_by_schema(self, client):
        response = client.post(
            f"{PUBLIC}/validate",
            json={"codigo_estudiante": "2045678912X", "dni": "4567"},
        )

        assert response.status_code == 422

    def test_rate_limited(self, client, record):
        body = {"codigo_estudiante": "2045678912X", "dni": "45678912"}
        for _ in range(10):
            assert client.post(f"{PUBLIC}/validate", json=body).status_code == 200

        response = client.post(f"{PUBLIC}/validate", json=body)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.json()["detail"]["error"] == "RATE_LIMIT_EXCEEDED"


class TestCompletionFlow:
    """complete, verify-email and resend-code"""

    def test_complete_sends_code(self, client, record, store, email_sender):
        response = _complete(client)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["email_hint"] == "j***@gmail.com"

        stored = store.get(record.id)
        assert stored.email == "juan.perez@gmail.com"
        assert stored.codigo_verificacion is not None
        assert "password_hash" in stored.perfil_pendiente
        email_sender.send.assert_awaited_once()

    def test_complete_rejects_short_password(self, client, record):
        response = _complete(client, password="corta")

        assert response.status_code == 422

    def test_verify_activates(self, client, record, store):
        assert _complete(client).status_code == 200
        code = store.get(record.id).codigo_verificacion

        response = client.post(
            f"{PUBLIC}/verify-email", json={"dni": "45678912", "codigo": code}
        )

        assert response.status_code == 200
        assert response.json()["codigo_estudiante"] == "20-45678912-X"
        stored = store.get(record.id)
        assert stored.estado_registro == RegistrationStatus.ACTIVO
        assert stored.usuario_id is not None
        assert "password_hash" not in (stored.perfil_pendiente or {})

    def test_code_is_single_use(self, client, record, store):
        _complete(client)
        code = store.get(record.id).codigo_verificacion
        body = {"dni": "45678912", "codigo": code}

        assert client.post(f"{PUBLIC}/verify-email", json=body).status_code == 200
        response = client.post(f"{PUBLIC}/verify-email", json=body)

        assert response.status_code == 404

    def test_wrong_code(self, client, record, store):
        _complete(client)
        code = store.get(record.id).codigo_verificacion
        wrong = "000000" if code != "000000" else "111111"

        response = client.post(
            f"{PUBLIC}/verify-email", json={"dni": "45678912", "codigo": wrong}
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "VERIFICATION_CODE_MISMATCH"
        assert store.get(record.id).estado_registro == RegistrationStatus.PENDIENTE

    def test_resend_cooldown(self, client, record, clock):
        _complete(client)

        first = client.post(f"{PUBLIC}/resend-code", json={"dni": "45678912"})
        clock.advance(seconds=20)
        second = client.post(f"{PUBLIC}/resend-code", json={"dni": "45678912"})

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.headers["Retry-After"] == "40"
        assert second.json()["detail"]["error"] == "RATE_LIMITED"

    def test_resend_unknown_dni(self, client):
        response = client.post(f"{PUBLIC}/resend-code", json={"dni": "12345678"})

        assert response.status_code == 404


class TestAdminAuth:
    """Admin endpoints require an admin bearer token."""

    def test_missing_token(self, client):
        response = client.get(ADMIN)
        assert response.status_code in (401, 403)

    def test_invalid_token(self, client):
        response = client.get(ADMIN, headers={"Authorization": "Bearer not-a-token"})

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "INVALID_TOKEN"

    def test_non_admin_role(self, client):
        token = create_access_token("user-9", {"email": "alumno@gmail.com", "role": "student"})

        response = client.get(ADMIN, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "ADMIN_ACCESS_REQUIRED"


class TestAdminEndpoints:
    """Admin create, list, stats, import and status endpoints."""

    def test_create(self, client, admin_headers, now):
        response = client.post(
            ADMIN,
            json={"nombre": "Juan", "apellido": "Perez", "dni": "45678912"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["codigo_estudiante"] == "2045678912X"
        assert data["codigo_display"] == "20-45678912-X"
        assert data["estado"] == "pendiente"

    def test_create_duplicate(self, client, admin_headers, record):
        response = client.post(
            ADMIN,
            json={"nombre": "Otro", "apellido": "Alumno", "dni": "45678912"},
            headers=admin_headers,
        )

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "DUPLICATE_DNI"

    def test_list_filters_expired(self, client, admin_headers, store, make_record, now):
        store.add(make_record(dni="10000001"))
        expired = store.add(make_record(dni="10000002", created=now - timedelta(days=40)))

        response = client.get(ADMIN, params={"estado": "expirado"}, headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == expired.id
        assert data["items"][0]["estado"] == "expirado"
        assert data["items"][0]["estado_registro"] == "pendiente"

    def test_stats(self, client, admin_headers, record):
        response = client.get(f"{ADMIN}/stats", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["pendientes"] == 1
        assert data["recientes"] == 1

    def test_import_csv(self, client, admin_headers, record):
        content = (
            "nombre,apellido,dni\n"
            "Ana,Lopez,11111111\n"
            "Luis,Diaz,123\n"
            "Ana,Lopez,11111111\n"
            "Juan,Perez,45678912\n"
        ).encode("utf-8")

        response = client.post(
            f"{ADMIN}/import-csv",
            files={"csv": ("alumnos.csv", content, "text/csv")},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["procesados"] == 4
        assert data["creados"] == 1
        assert data["errores"][0]["linea"] == 3
        assert data["dnis_duplicados"] == ["11111111"]
        assert data["dnis_existentes"][0]["dni"] == "45678912"

    def test_import_csv_missing_column(self, client, admin_headers):
        response = client.post(
            f"{ADMIN}/import-csv",
            files={"csv": ("alumnos.csv", b"nombre,apellido\nAna,Lopez\n", "text/csv")},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INVALID_CSV"

    def test_suspend_and_cancel(self, client, admin_headers, record, store):
        suspended = client.patch(
            f"{ADMIN}/{record.id}/status", json={"estado": "suspendido"}, headers=admin_headers
        )
        cancelled = client.patch(
            f"{ADMIN}/{record.id}/status", json={"estado": "cancelado"}, headers=admin_headers
        )
        restored = client.patch(
            f"{ADMIN}/{record.id}/status", json={"estado": "pendiente"}, headers=admin_headers
        )

        assert suspended.status_code == 200
        assert suspended.json()["estado"] == "suspendido"
        assert cancelled.status_code == 200
        assert restored.status_code == 409
        assert store.get(record.id).estado_registro == RegistrationStatus.CANCELADO

    def test_status_unknown_record(self, client, admin_headers):
        response = client.patch(
            f"{ADMIN}/{uuid.uuid4()}/status", json={"estado": "suspendido"}, headers=admin_headers
        )

        assert response.status_code == 404

    @pytest.mark.parametrize(
        "path,body",
        [
            ("abc/status", {"estado": "suspendido"}),
            ("abc/reactivate", {"dias_extension": 15}),
        ],
    )
    def test_malformed_record_id(self, client, admin_headers, store, path, body):
        """Ids that are not UUIDs are rejected before reaching the store."""
        response = client.patch(f"{ADMIN}/{path}", json=body, headers=admin_headers)

        assert response.status_code == 422

    def test_reactivate_expired(self, client, admin_headers, store, make_record, now):
        expired = store.add(make_record(created=now - timedelta(days=40)))

        response = client.patch(
            f"{ADMIN}/{expired.id}/reactivate",
            json={"dias_extension": 15},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["estado"] == "pendiente"
        assert store.get(expired.id).fecha_vencimiento == now + timedelta(days=15)

    def test_reactivate_not_expired(self, client, admin_headers, record):
        response = client.patch(
            f"{ADMIN}/{record.id}/reactivate", json={"dias_extension": 15}, headers=admin_headers
        )

        assert response.status_code == 409

    def test_reactivate_extension_out_of_range(self, client, admin_headers, record):
        response = client.patch(
            f"{ADMIN}/{record.id}/reactivate", json={"dias_extension": 400}, headers=admin_headers
        )

        assert response.status_code == 422
