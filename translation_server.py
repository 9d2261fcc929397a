import asyncio
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web
from loguru import logger


class TranslationServer:
    """In-process fake of the v2 translation API.

    Behaviour is scripted per route name: ``delays[name]`` and
    ``failures[name]`` are consumed one entry per request, and every request
    is counted in ``request_counts``.
    """

    def __init__(self, auth_key: str = "test-key:fx"):
        self.auth_key = auth_key
        self.delays: dict[str, list[float]] = {}
        self.failures: dict[str, list[int]] = {}
        self.request_counts: Counter = Counter()
        self.in_flight: Counter = Counter()
        self.max_in_flight: Counter = Counter()
        self.malformed_routes: set[str] = set()
        self.last_params: dict[str, dict[str, str]] = {}

        self.failing_targets: set[str] = set()
        self.status_sequence: list[str] = ["translating", "translating", "done"]
        self.document_error_message = "Source document is corrupt"
        self.document_ready = True
        self.documents: dict[str, dict] = {}
        self.glossaries: dict[str, dict] = {}
        self.glossary_ready_after = 0
        self.character_count = 0
        self.character_limit = 500000
        self.document_count = 0
        self.document_limit = 10

        self.runner: Optional[web.AppRunner] = None
        self.logger = logger
        self.app = web.Application(middlewares=[self.scripted_behaviour])
        self.app.router.add_post("/v2/translate", self.handle_translate, name="translate")
        self.app.router.add_post("/v2/write/rephrase", self.handle_rephrase, name="rephrase")
        self.app.router.add_post("/v2/document", self.handle_document_upload, name="upload")
        self.app.router.add_post("/v2/document/{document_id}", self.handle_document_status, name="status")
        self.app.router.add_post(
            "/v2/document/{document_id}/result", self.handle_document_result, name="result"
        )
        self.app.router.add_get("/v2/usage", self.handle_usage, name="usage")
        self.app.router.add_get("/v2/languages", self.handle_languages, name="languages")
        self.app.router.add_get(
            "/v2/glossary-language-pairs", self.handle_glossary_languages, name="glossary_languages"
        )
        self.app.router.add_post("/v2/glossaries", self.handle_create_glossary, name="create_glossary")
        self.app.router.add_get("/v2/glossaries", self.handle_list_glossaries, name="list_glossaries")
        self.app.router.add_get("/v2/glossaries/{glossary_id}", self.handle_get_glossary, name="get_glossary")
        self.app.router.add_get(
            "/v2/glossaries/{glossary_id}/entries", self.handle_glossary_entries, name="glossary_entries"
        )
        self.app.router.add_delete(
            "/v2/glossaries/{glossary_id}", self.handle_delete_glossary, name="delete_glossary"
        )

    @web.middleware
    async def scripted_behaviour(self, request, handler):
        route = request.match_info.route.name
        self.request_counts[route] += 1
        self.in_flight[route] += 1
        self.max_in_flight[route] = max(self.max_in_flight[route], self.in_flight[route])
        try:
            delays = self.delays.get(route)
            if delays:
                await asyncio.sleep(delays.pop(0))

            if request.headers.get("Authorization") != f"DeepL-Auth-Key {self.auth_key}":
                return web.json_response({"message": "Invalid auth key"}, status=403)

            failures = self.failures.get(route)
            if failures:
                status = failures.pop(0)
                self.logger.info(f"Returning scripted {status} for {route}")
                return web.json_response({"message": f"Scripted failure for {route}"}, status=status)

            if route in self.malformed_routes:
                return web.Response(text="<html>Bad gateway</html>", content_type="text/html")

            return await handler(request)
        finally:
            self.in_flight[route] -= 1

    async def handle_translate(self, request):
        data = await request.post()
        self.last_params["translate"] = {key: value for key, value in data.items() if key != "text"}
        texts = data.getall("text", [])
        target_lang = data.get("target_lang", "")
        source_lang = data.get("source_lang", "en")

        if target_lang.lower() in self.failing_targets:
            return web.json_response(
                {"message": "Quota exceeded", "detail": f"target {target_lang}"}, status=456
            )
        if not texts:
            return web.json_response({"message": "Parameter 'text' not specified."}, status=400)

        self.character_count += sum(len(text) for text in texts)
        return web.json_response(
            {
                "translations": [
                    {
                        "detected_source_language": source_lang.upper(),
                        "text": f"[{target_lang}] {text}",
                        "billed_characters": len(text),
                    }
                    for text in texts
                ]
            }
        )

    async def handle_rephrase(self, request):
        data = await request.post()
        self.last_params["rephrase"] = {key: value for key, value in data.items() if key != "text"}
        texts = data.getall("text", [])
        target_lang = data.get("target_lang", "en-US")
        style = data.get("writing_style") or data.get("tone")
        prefix = f"[{style}] " if style else ""
        return web.json_response(
            {
                "improvements": [
                    {
                        "text": f"{prefix}{text.strip()}.",
                        "detected_source_language": "EN",
                        "target_language": target_lang,
                    }
                    for text in texts
                ]
            }
        )

    async def handle_document_upload(self, request):
        data = await request.post()
        upload = data["file"]
        document_id = uuid.uuid4().hex.upper()
        document_key = uuid.uuid4().hex
        self.documents[document_id] = {
            "key": document_key,
            "content": upload.file.read(),
            "target_lang": data.get("target_lang"),
            "polls": 0,
        }
        self.document_count += 1
        self.logger.info(f"Document {document_id} uploaded")
        return web.json_response({"document_id": document_id, "document_key": document_key})

    def _find_document(self, document_id: str, document_key: Optional[str]):
        document = self.documents.get(document_id)
        if document is None:
            raise web.HTTPNotFound(
                text='{"message": "Document not found"}', content_type="application/json"
            )
        if document["key"] != document_key:
            raise web.HTTPForbidden(
                text='{"message": "Invalid document key"}', content_type="application/json"
            )
        return document

    async def handle_document_status(self, request):
        document_id = request.match_info["document_id"]
        data = await request.post()
        document = self._find_document(document_id, data.get("document_key"))

        index = min(document["polls"], len(self.status_sequence) - 1)
        document["polls"] += 1
        status = self.status_sequence[index]

        body = {"document_id": document_id, "status": status}
        if status == "translating":
            body["seconds_remaining"] = 2
        elif status == "done":
            body["billed_characters"] = len(document["content"])
        elif status == "error":
            body["error_message"] = self.document_error_message
        return web.json_response(body)

    async def handle_document_result(self, request):
        document_id = request.match_info["document_id"]
        data = await request.post()
        document = self._find_document(document_id, data.get("document_key"))

        if not self.document_ready:
            return web.json_response({"message": "Document not ready"}, status=503)
        return web.Response(
            body=b"translated:" + document["content"], content_type="application/octet-stream"
        )

    async def handle_usage(self, request):
        return web.json_response(
            {
                "character_count": self.character_count,
                "character_limit": self.character_limit,
                "document_count": self.document_count,
                "document_limit": self.document_limit,
            }
        )

    async def handle_languages(self, request):
        if request.query.get("type") == "target":
            return web.json_response(
                [
                    {"language": "DE", "name": "German", "supports_formality": True},
                    {"language": "EN-US", "name": "English (American)", "supports_formality": False},
                ]
            )
        return web.json_response(
            [{"language": "DE", "name": "German"}, {"language": "EN", "name": "English"}]
        )

    async def handle_glossary_languages(self, request):
        return web.json_response(
            {"supported_languages": [{"source_lang": "en", "target_lang": "de"}]}
        )

    def _glossary_or_404(self, request):
        glossary = self.glossaries.get(request.match_info["glossary_id"])
        if glossary is None:
            raise web.HTTPNotFound(
                text='{"message": "Glossary not found"}', content_type="application/json"
            )
        return glossary

    async def handle_create_glossary(self, request):
        data = await request.post()
        entries = [line for line in data["entries"].splitlines() if line.strip()]
        glossary_id = str(uuid.uuid4())
        self.glossaries[glossary_id] = {
            "info": {
                "glossary_id": glossary_id,
                "name": data["name"],
                "ready": self.glossary_ready_after == 0,
                "source_lang": data["source_lang"],
                "target_lang": data["target_lang"],
                "creation_time": datetime.now(timezone.utc).isoformat(),
                "entry_count": len(entries),
            },
            "entries": data["entries"],
            "gets": 0,
        }
        return web.json_response(self.glossaries[glossary_id]["info"], status=201)

    async def handle_get_glossary(self, request):
        glossary = self._glossary_or_404(request)
        glossary["gets"] += 1
        if glossary["gets"] > self.glossary_ready_after:
            glossary["info"]["ready"] = True
        return web.json_response(glossary["info"])

    async def handle_list_glossaries(self, request):
        return web.json_response(
            {"glossaries": [glossary["info"] for glossary in self.glossaries.values()]}
        )

    async def handle_glossary_entries(self, request):
        glossary = self._glossary_or_404(request)
        return web.Response(text=glossary["entries"], content_type="text/tab-separated-values")

    async def handle_delete_glossary(self, request):
        self._glossary_or_404(request)
        del self.glossaries[request.match_info["glossary_id"]]
        return web.Response(status=204)

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "127.0.0.1", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def wait_for_requests(self, route: str, count: int, timeout: float = 5.0):
        """Block until at least ``count`` requests have reached ``route``"""

        async def poll():
            while self.request_counts[route] < count:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(poll(), timeout)

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
