from sqlalchemy.exc import OperationalError


def test_liveness(client):
    response = client.get("/health/liveness")

    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_readiness_reports_checks(client):
    response = client.get("/health/readiness")

    assert response.status_code == 200
    checks = response.get_json()["checks"]
    assert checks["database"]["healthy"]
    assert checks["scheduler"]["message"] == "Scheduler disabled"
    assert checks["change_queue"]["stats"]["pending"] == 0


def test_readiness_fails_when_database_is_down(client, mocker):
    mocker.patch(
        "feedsync.web.health.text",
        side_effect=OperationalError("SELECT 1", {}, Exception("database is locked"))
    )

    response = client.get("/health/readiness")

    assert response.status_code == 503
    assert response.get_json()["checks"]["database"]["healthy"] is False
