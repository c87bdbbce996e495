import os
import uuid

from locust import HttpUser, task, between


class LinkShortenerUser(HttpUser):
    wait_time = between(1, 3)

    def on_start(self):
        # Токен сессии выдаёт внешний сервис, передаём его через переменную окружения
        token = os.getenv("LOCUST_SESSION_TOKEN", "")
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}

        # Создаём ссылку для последующих тестов редиректа
        self.shortcode = f"load-{uuid.uuid4().hex[:8]}"
        response = self.client.post(
            "/api/links",
            json={"shortcode": self.shortcode, "url": "https://locust.io"},
            headers=self.headers,
        )
        if response.status_code != 201:
            self.shortcode = None

    @task(1)
    def create_link(self):
        self.client.post(
            "/api/links",
            json={"shortcode": f"load-{uuid.uuid4().hex[:8]}", "url": "https://example.com/test"},
            headers=self.headers,
            name="/api/links",
        )

    @task(10)
    def redirect_link(self):
        if self.shortcode:
            self.client.get(f"/{self.shortcode}", allow_redirects=False, name="/[shortcode]")

    @task(2)
    def overview(self):
        self.client.get("/api/analytics/overview", headers=self.headers)
