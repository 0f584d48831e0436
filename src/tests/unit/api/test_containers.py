"""Unit tests for the container and host routes."""

from fleethub.core.domain import ContainerStatus


def _error(response) -> dict:
    return response.json()["error"]


class TestErrorResponses:
    def test_not_found_format(self, client) -> None:
        response = client.get("/api/v1/containers/missing")

        assert response.status_code == 404
        assert response.json() == {
            "error": {"code": "CONTAINER_NOT_FOUND", "message": "Container not found"}
        }

    def test_invalid_component(self, client, store) -> None:
        container = store.add_container("blog", store.add_host("h1"))

        response = client.post(f"/api/v1/containers/{container.id}/services/cache/start")

        assert response.status_code == 422
        assert _error(response)["code"] == "INVALID_COMPONENT"

    def test_command_without_agent(self, client, store) -> None:
        container = store.add_container("blog", store.add_host("h1"))

        response = client.post(f"/api/v1/containers/{container.id}/services/app/stop")

        assert response.status_code == 409
        assert _error(response)["code"] == "AGENT_UNAVAILABLE"

    def test_migrate_to_same_host(self, client, store) -> None:
        host = store.add_host("h1")
        container = store.add_container("blog", host, ContainerStatus.CONNECTED)

        response = client.post(
            f"/api/v1/containers/{container.id}/migrate",
            json={"destination_host_id": host.id},
        )

        assert response.status_code == 422
        assert _error(response)["code"] == "INVALID_MIGRATION"

    def test_migration_status_without_job(self, client, store) -> None:
        container = store.add_container("blog", store.add_host("h1"))

        response = client.get(f"/api/v1/containers/{container.id}/migrate/status")

        assert response.status_code == 404
        assert _error(response)["code"] == "JOB_NOT_FOUND"

    def test_cancel_without_job(self, client, store) -> None:
        container = store.add_container("blog", store.add_host("h1"))

        response = client.post(f"/api/v1/containers/{container.id}/migrate/cancel")

        assert response.status_code == 409
        assert _error(response)["code"] == "NO_ACTIVE_JOB"

    def test_rename_invalid_slug(self, client, store) -> None:
        container = store.add_container("blog", store.add_host("h1"))

        response = client.post(
            f"/api/v1/containers/{container.id}/rename", json={"new_slug": "No Spaces"}
        )

        assert response.status_code == 422
        assert _error(response)["code"] == "INVALID_SLUG"
        assert container.slug == "blog"


class TestContainerRoutes:
    def test_detail_without_session(self, client, store) -> None:
        container = store.add_container("blog", store.add_host("h1"))

        response = client.get(f"/api/v1/containers/{container.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["slug"] == "blog"
        assert body["connected"] is False
        assert body["metrics"] is None
        assert body["stack_status"] is None
        assert "token_hash" not in body

    def test_list_by_host(self, client, store) -> None:
        h1, h2 = store.add_host("h1"), store.add_host("h2")
        store.add_container("blog", h1)
        store.add_container("shop", h2)

        response = client.get("/api/v1/containers", params={"host_id": h1.id})

        assert response.json()["total"] == 1
        assert response.json()["items"][0]["slug"] == "blog"


class TestHostRoutes:
    def test_delete_in_use(self, client, store) -> None:
        host = store.add_host("h1")
        store.add_container("blog", host)

        response = client.delete(f"/api/v1/hosts/{host.id}")

        assert response.status_code == 409
        assert _error(response)["code"] == "HOST_IN_USE"
        assert host.id in store.hosts

    def test_delete_empty(self, client, store) -> None:
        host = store.add_host("h1")

        response = client.delete(f"/api/v1/hosts/{host.id}")

        assert response.status_code == 204
        assert host.id not in store.hosts

    def test_invalid_address(self, client) -> None:
        response = client.post("/api/v1/hosts", json={"name": "h1", "address": "ftp://h1"})

        assert response.status_code == 422
