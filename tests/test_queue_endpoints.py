"""Tests for the queue HTTP API."""

from uuid import uuid4

from httpx import AsyncClient

from healthqueue.schemas.auth import UserRole

API = "/api/v1"


async def test_join_requires_authentication(client: AsyncClient):
    response = await client.post(f"{API}/queue/join", json={"doctor_id": str(uuid4())})

    assert response.status_code == 401
    assert response.json()["error"] == "UnauthorizedException"
    assert response.headers["WWW-Authenticate"] == "Bearer"


async def test_invalid_token_is_rejected(client: AsyncClient):
    response = await client.get(
        f"{API}/queue/patients/{uuid4()}/status",
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert response.status_code == 401


async def test_patient_joins_and_sees_status(client: AsyncClient, make_doctor, auth_headers):
    doctor_id = await make_doctor()
    patient_id = uuid4()
    headers = auth_headers(patient_id, UserRole.PATIENT)

    response = await client.post(
        f"{API}/queue/join",
        json={"doctor_id": str(doctor_id), "priority": "high", "notes": "Fever since Monday"},
        headers=headers,
    )

    assert response.status_code == 201
    entry = response.json()
    assert entry["patient_id"] == str(patient_id)
    assert entry["status"] == "waiting"
    assert entry["priority"] == "high"
    assert entry["position"] == 1
    assert entry["estimated_wait_minutes"] == 15

    status_response = await client.get(
        f"{API}/queue/patients/{patient_id}/status", headers=headers
    )
    assert status_response.status_code == 200
    assert status_response.json()["entry"]["id"] == entry["id"]


async def test_duplicate_join_is_conflict(client: AsyncClient, make_doctor, auth_headers):
    doctor_id = await make_doctor()
    headers = auth_headers(uuid4(), UserRole.PATIENT)
    payload = {"doctor_id": str(doctor_id)}

    await client.post(f"{API}/queue/join", json=payload, headers=headers)
    response = await client.post(f"{API}/queue/join", json=payload, headers=headers)

    assert response.status_code == 409
    assert response.json()["error"] == "ConflictException"


async def test_join_unavailable_doctor(client: AsyncClient, make_doctor, auth_headers):
    doctor_id = await make_doctor(is_available=False)

    response = await client.post(
        f"{API}/queue/join",
        json={"doctor_id": str(doctor_id)},
        headers=auth_headers(uuid4(), UserRole.PATIENT),
    )

    assert response.status_code == 422
    assert response.json()["error"] == "UnavailableException"


async def test_doctor_cannot_join(client: AsyncClient, make_doctor, auth_headers):
    doctor_id = await make_doctor()

    response = await client.post(
        f"{API}/queue/join",
        json={"doctor_id": str(doctor_id)},
        headers=auth_headers(doctor_id, UserRole.DOCTOR),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "ForbiddenException"


async def test_admin_join_requires_patient_id(client: AsyncClient, make_doctor, auth_headers):
    doctor_id = await make_doctor()
    headers = auth_headers(uuid4(), UserRole.ADMIN)

    missing = await client.post(
        f"{API}/queue/join", json={"doctor_id": str(doctor_id)}, headers=headers
    )
    on_behalf = await client.post(
        f"{API}/queue/join",
        json={"doctor_id": str(doctor_id), "patient_id": str(uuid4())},
        headers=headers,
    )

    assert missing.status_code == 422
    assert on_behalf.status_code == 201


async def test_doctor_workflow(client: AsyncClient, make_doctor, auth_headers):
    doctor_id = await make_doctor()
    doctor_headers = auth_headers(doctor_id, UserRole.DOCTOR)
    entries = []
    for _ in range(3):
        response = await client.post(
            f"{API}/queue/join",
            json={"doctor_id": str(doctor_id)},
            headers=auth_headers(uuid4(), UserRole.PATIENT),
        )
        entries.append(response.json())

    started = await client.post(
        f"{API}/queue/start-consultation",
        json={"entry_id": entries[0]["id"]},
        headers=doctor_headers,
    )
    skipped = await client.post(
        f"{API}/queue/{entries[1]['id']}/status",
        json={"status": "skipped"},
        headers=doctor_headers,
    )
    completed = await client.post(
        f"{API}/queue/complete-consultation",
        json={"entry_id": entries[0]["id"]},
        headers=doctor_headers,
    )

    assert started.status_code == 200
    assert started.json()["status"] == "in_consultation"
    assert skipped.json()["status"] == "skipped"
    assert completed.json()["status"] == "completed"

    queue = await client.get(f"{API}/queue/doctor/{doctor_id}", headers=doctor_headers)
    assert queue.status_code == 200
    body = queue.json()
    assert body["in_consultation"] is None
    assert [e["id"] for e in body["entries"]] == [entries[2]["id"]]
    assert body["entries"][0]["position"] == 1

    stats = await client.get(f"{API}/queue/doctor/{doctor_id}/stats", headers=doctor_headers)
    assert stats.status_code == 200
    assert stats.json()["by_status"]["completed"] == 1


async def test_invalid_transition_is_409(client: AsyncClient, make_doctor, auth_headers):
    doctor_id = await make_doctor()
    joined = await client.post(
        f"{API}/queue/join",
        json={"doctor_id": str(doctor_id)},
        headers=auth_headers(uuid4(), UserRole.PATIENT),
    )

    response = await client.post(
        f"{API}/queue/complete-consultation",
        json={"entry_id": joined.json()["id"]},
        headers=auth_headers(doctor_id, UserRole.DOCTOR),
    )

    assert response.status_code == 409
    assert response.json()["error"] == "InvalidStateException"


async def test_set_status_rejects_other_targets(client: AsyncClient, make_doctor, auth_headers):
    doctor_id = await make_doctor()
    joined = await client.post(
        f"{API}/queue/join",
        json={"doctor_id": str(doctor_id)},
        headers=auth_headers(uuid4(), UserRole.PATIENT),
    )

    response = await client.post(
        f"{API}/queue/{joined.json()['id']}/status",
        json={"status": "completed"},
        headers=auth_headers(doctor_id, UserRole.DOCTOR),
    )

    assert response.status_code == 409
    assert response.json()["error"] == "InvalidStateException"


async def test_patient_leaves_own_entry_only(client: AsyncClient, make_doctor, auth_headers):
    doctor_id = await make_doctor()
    owner = uuid4()
    joined = await client.post(
        f"{API}/queue/join",
        json={"doctor_id": str(doctor_id)},
        headers=auth_headers(owner, UserRole.PATIENT),
    )
    payload = {"entry_id": joined.json()["id"]}

    foreign = await client.post(
        f"{API}/queue/leave", json=payload, headers=auth_headers(uuid4(), UserRole.PATIENT)
    )
    own = await client.post(
        f"{API}/queue/leave", json=payload, headers=auth_headers(owner, UserRole.PATIENT)
    )

    assert foreign.status_code == 403
    assert own.status_code == 200
    assert own.json()["status"] == "left"

    history = await client.get(
        f"{API}/queue/patients/{owner}/history", headers=auth_headers(owner, UserRole.PATIENT)
    )
    assert history.json()["total"] == 1


async def test_leave_unknown_entry_is_404(client: AsyncClient, auth_headers):
    response = await client.post(
        f"{API}/queue/leave",
        json={"entry_id": str(uuid4())},
        headers=auth_headers(uuid4(), UserRole.PATIENT),
    )

    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundException"


async def test_patient_cannot_read_other_views(client: AsyncClient, make_doctor, auth_headers):
    doctor_id = await make_doctor()
    headers = auth_headers(uuid4(), UserRole.PATIENT)

    doctor_queue = await client.get(f"{API}/queue/doctor/{doctor_id}", headers=headers)
    other_status = await client.get(f"{API}/queue/patients/{uuid4()}/status", headers=headers)

    assert doctor_queue.status_code == 403
    assert other_status.status_code == 403


async def test_admin_overview(client: AsyncClient, make_doctor, auth_headers):
    doctor_id = await make_doctor()
    await client.post(
        f"{API}/queue/join",
        json={"doctor_id": str(doctor_id)},
        headers=auth_headers(uuid4(), UserRole.PATIENT),
    )

    forbidden = await client.get(
        f"{API}/admin/queues/overview", headers=auth_headers(uuid4(), UserRole.DOCTOR)
    )
    response = await client.get(
        f"{API}/admin/queues/overview", headers=auth_headers(uuid4(), UserRole.ADMIN)
    )

    assert forbidden.status_code == 403
    assert response.status_code == 200
    assert response.json()["waiting_by_doctor"] == {str(doctor_id): 1}


async def test_busy_queue_returns_retry_after(
    client: AsyncClient, make_doctor, auth_headers, queue_locks
):
    doctor_id = await make_doctor()
    queue_locks.timeout = 0.05

    async with queue_locks.hold(doctor_id):
        response = await client.post(
            f"{API}/queue/join",
            json={"doctor_id": str(doctor_id)},
            headers=auth_headers(uuid4(), UserRole.PATIENT),
        )

    assert response.status_code == 503
    assert response.json()["error"] == "BusyException"
    assert response.headers["Retry-After"] == "1"


async def test_validation_error(client: AsyncClient, auth_headers):
    response = await client.post(
        f"{API}/queue/join",
        json={"doctor_id": "not-a-uuid"},
        headers=auth_headers(uuid4(), UserRole.PATIENT),
    )

    assert response.status_code == 422
