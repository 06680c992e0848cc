import uuid

from locust import HttpUser, task, between

TENANT_ID = str(uuid.uuid4())


class TableUser(HttpUser):
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = {"X-Tenant-Id": TENANT_ID, "X-User-Id": str(uuid.uuid4())}
        self.slug = f"bench_{uuid.uuid4().hex[:8]}"
        payload = {
            "slug": self.slug,
            "label": "Bench",
            "description": "load test table",
            "columns": [
                {"name": "title", "data_type": "text", "view_type": "text", "view_editor": "input"},
                {"name": "status", "data_type": "text", "view_type": "text", "view_editor": "input"},
                {"name": "amount", "data_type": "decimal", "view_type": "number", "view_editor": "input"},
            ],
        }
        self.client.post("/api/schemas", json=payload, headers=self.headers)

    @task(3)
    def query_table(self):
        self.client.post(
            f"/api/records/{self.slug}/query/table",
            json={"limit": 50, "aggregationFilter": ["status", "amount"]},
            headers=self.headers,
            name="/api/records/[slug]/query/table",
        )

    @task(1)
    def kanban(self):
        self.client.post(
            f"/api/records/{self.slug}/query/kanban",
            json={"statusColumn": "status"},
            headers=self.headers,
            name="/api/records/[slug]/query/kanban",
        )

    @task(1)
    def create_record(self):
        data = {"title": "bench item", "status": "open", "amount": 12.5}
        self.client.post(f"/api/records/{self.slug}", json=data, headers=self.headers, name="/api/records/[slug]")
