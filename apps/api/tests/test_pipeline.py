"""Pipeline orchestration tests with in-process fakes for the I/O stages."""

from __future__ import annotations

import asyncio
from functools import partial
from pathlib import Path
import tempfile
import unittest
from unittest import mock

import httpx
from starlette.requests import ClientDisconnect

from mergerelay.adapters.tiktok import DirectPostInit
from mergerelay.core.config import Settings
from mergerelay.core.responses import ReleasingStreamingResponse
from mergerelay.domain.pipeline_fsm import PipelineStage
from mergerelay.domain.references import CloudInternalPath
from mergerelay.errors import ConfigurationError, FetchError, FetchFailureReason, MergeError
from mergerelay.repositories.memory import InMemoryStore
from mergerelay.services.credentials import CredentialCache
from mergerelay.services.pipeline import PipelineOrchestrator, resolve_destination


class _FakeFetcher:
    def __init__(self, *, fail_on: str | None = None) -> None:
        self.fail_on = fail_on
        self.fetched: list[object] = []

    async def fetch(self, ref, fallback_extension, *, scope):
        self.fetched.append(ref)
        handle = scope.create(fallback_extension)
        handle.mark_in_use()
        handle.path.write_bytes(b"source")
        if ref == self.fail_on:
            raise FetchError(FetchFailureReason.NOT_FOUND, "GET returned 404", status_code=404)
        return handle


class _FakeEngine:
    def __init__(self, *, fail: bool = False, output_size: int | None = None) -> None:
        self.fail = fail
        self.output_size = output_size

    async def merge(self, video_path, audio_path, *, scope):
        output = scope.create(".mp4")
        output.mark_in_use()
        if self.output_size is None:
            output.path.write_bytes(b"merged-" + video_path.read_bytes() + b"-" + audio_path.read_bytes())
        else:
            output.path.write_bytes(b"m" * self.output_size)
        if self.fail:
            raise MergeError(1, "Invalid data found when processing input")
        return output


class _FakePublisher:
    def __init__(self) -> None:
        self.uploads: list[tuple[Path, str]] = []
        self.init_calls: list[dict] = []
        self.chunks: list[str] = []

    async def upload(self, local_path, destination_path):
        self.uploads.append((local_path, destination_path))

    async def init_direct_post(self, access_token, *, title, size_bytes, privacy):
        self.init_calls.append({"token": access_token, "title": title, "size": size_bytes, "privacy": privacy})
        await asyncio.sleep(0.01)
        return DirectPostInit(
            publish_id=f"pub-{len(self.init_calls)}",
            upload_url="https://upload.example.com/video/1",
        )

    async def upload_chunk(self, upload_url, local_path):
        self.chunks.append(upload_url)

    async def get_post_status(self, access_token, publish_id):
        return {"data": {"status": "PROCESSING_UPLOAD", "publish_id": publish_id}}


def _token_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"access_token": f"token-for-{request.url.host}", "expires_in": 3600})


_LARGE_OUTPUT_BYTES = 4 * 1024 * 1024


def _http_scope(spec_version: str) -> dict:
    return {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": spec_version},
        "http_version": "1.1",
        "method": "POST",
        "path": "/merge",
        "headers": [],
    }


class ResolveDestinationTests(unittest.TestCase):
    def test_explicit_mp4_path_is_used_verbatim(self) -> None:
        self.assertEqual(resolve_destination("/Out/final.mp4", 123), "/Out/final.mp4")

    def test_folder_gets_timestamped_file_name(self) -> None:
        self.assertEqual(resolve_destination("/Out/", 1700000000000), "/Out/merged-1700000000000.mp4")
        self.assertEqual(resolve_destination("/Out", 5), "/Out/merged-5.mp4")


class PipelineOrchestratorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.scratch_dir = Path(self._tmp.name)
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(_token_handler))
        self.store = InMemoryStore()
        self.publisher = _FakePublisher()

    async def asyncTearDown(self) -> None:
        await self.client.aclose()
        self._tmp.cleanup()

    def _orchestrator(
        self,
        *,
        fetcher: _FakeFetcher | None = None,
        engine: _FakeEngine | None = None,
        tiktok: bool = True,
    ) -> PipelineOrchestrator:
        tiktok_values = {"tiktok_app_key": "k", "tiktok_app_secret": "s", "tiktok_refresh_token": "r"}
        settings = Settings(scratch_dir=self.scratch_dir, **(tiktok_values if tiktok else {}))
        return PipelineOrchestrator(
            settings=settings,
            store=self.store,
            credentials=CredentialCache(store=self.store, client=self.client, settings=settings),
            fetcher=fetcher or _FakeFetcher(),
            engine=engine or _FakeEngine(),
            publisher=self.publisher,
            clock=lambda: 1_700_000_000.0,
        )

    def _scratch_files(self) -> list[Path]:
        return list(self.scratch_dir.iterdir())

    async def test_ack_mode_uploads_and_leaves_no_files(self) -> None:
        outcome = await self._orchestrator().run_merge(
            video_url="https://cdn.example.com/v.mp4",
            audio_url="https://cdn.example.com/a.mp3",
            dropbox_path="/Merged",
            no_stream=True,
        )

        self.assertEqual(outcome.saved_path, "/Merged/merged-1700000000000.mp4")
        self.assertEqual(self.publisher.uploads[0][1], "/Merged/merged-1700000000000.mp4")
        self.assertIsNone(outcome.output)
        self.assertEqual(
            outcome.job.history,
            [
                PipelineStage.IDLE,
                PipelineStage.DOWNLOADING,
                PipelineStage.MERGING,
                PipelineStage.UPLOADING,
                PipelineStage.RETURNING,
                PipelineStage.CLEANUP,
                PipelineStage.DONE,
            ],
        )
        self.assertEqual(self._scratch_files(), [])

    async def test_stream_mode_hands_files_to_the_stream_until_finished(self) -> None:
        orchestrator = self._orchestrator()
        outcome = await orchestrator.run_merge(
            video_url="https://cdn.example.com/v.mp4",
            audio_url="https://cdn.example.com/a.mp3",
        )

        self.assertIs(outcome.job.status, PipelineStage.STREAMING)
        self.assertEqual(len(self._scratch_files()), 3)

        body = b"".join([chunk async for chunk in orchestrator.stream(outcome)])
        orchestrator.finish_stream(outcome)
        orchestrator.finish_stream(outcome)

        self.assertEqual(body, b"merged-source-source")
        self.assertTrue(outcome.drained)
        self.assertIs(outcome.job.status, PipelineStage.DONE)
        self.assertEqual(self._scratch_files(), [])

    async def test_aborted_stream_still_cleans_up(self) -> None:
        orchestrator = self._orchestrator()
        outcome = await orchestrator.run_merge(
            video_url="https://cdn.example.com/v.mp4",
            audio_url="https://cdn.example.com/a.mp3",
        )

        orchestrator.finish_stream(outcome, failed=True)

        self.assertFalse(outcome.drained)
        self.assertEqual(outcome.job.history[-3:], [PipelineStage.FAILED, PipelineStage.CLEANUP, PipelineStage.DONE])
        self.assertEqual(self._scratch_files(), [])

    async def test_stream_reads_file_off_the_event_loop(self) -> None:
        orchestrator = self._orchestrator(engine=_FakeEngine(output_size=_LARGE_OUTPUT_BYTES))
        outcome = await orchestrator.run_merge(
            video_url="https://cdn.example.com/v.mp4",
            audio_url="https://cdn.example.com/a.mp3",
        )

        with mock.patch("asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
            body = b"".join([chunk async for chunk in orchestrator.stream(outcome)])
        orchestrator.finish_stream(outcome)

        self.assertEqual(len(body), _LARGE_OUTPUT_BYTES)
        # One call per 64 KiB chunk plus the final empty read.
        self.assertEqual(to_thread.call_count, _LARGE_OUTPUT_BYTES // (64 * 1024) + 1)
        self.assertIs(outcome.job.status, PipelineStage.DONE)

    async def test_stream_closed_before_last_chunk_counts_as_failed(self) -> None:
        orchestrator = self._orchestrator(engine=_FakeEngine(output_size=_LARGE_OUTPUT_BYTES))
        outcome = await orchestrator.run_merge(
            video_url="https://cdn.example.com/v.mp4",
            audio_url="https://cdn.example.com/a.mp3",
        )

        chunks = orchestrator.stream(outcome)
        await chunks.__anext__()
        await chunks.aclose()
        orchestrator.finish_stream(outcome)

        self.assertFalse(outcome.drained)
        self.assertEqual(outcome.job.history[-3:], [PipelineStage.FAILED, PipelineStage.CLEANUP, PipelineStage.DONE])
        self.assertEqual(self._scratch_files(), [])

    async def _large_streaming_response(self):
        orchestrator = self._orchestrator(engine=_FakeEngine(output_size=_LARGE_OUTPUT_BYTES))
        outcome = await orchestrator.run_merge(
            video_url="https://cdn.example.com/v.mp4",
            audio_url="https://cdn.example.com/a.mp3",
        )
        response = ReleasingStreamingResponse(
            orchestrator.stream(outcome),
            media_type="video/mp4",
            on_close=partial(orchestrator.finish_stream, outcome),
        )
        return outcome, response

    async def test_client_disconnect_during_response_releases_files(self) -> None:
        outcome, response = await self._large_streaming_response()
        first_body_sent = asyncio.Event()
        sent: list[bytes] = []

        async def receive():
            await first_body_sent.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            if message["type"] == "http.response.body":
                sent.append(message.get("body", b""))
                first_body_sent.set()
                await asyncio.sleep(0.05)

        await response(_http_scope("2.0"), receive, send)

        self.assertLess(sum(len(body) for body in sent), _LARGE_OUTPUT_BYTES)
        self.assertFalse(outcome.drained)
        self.assertEqual(outcome.job.history[-3:], [PipelineStage.FAILED, PipelineStage.CLEANUP, PipelineStage.DONE])
        self.assertEqual(self._scratch_files(), [])

    async def test_send_error_during_response_releases_files(self) -> None:
        outcome, response = await self._large_streaming_response()

        async def receive():
            await asyncio.Event().wait()

        async def send(message):
            if message["type"] == "http.response.body":
                raise OSError("connection reset by peer")

        with self.assertRaises((ClientDisconnect, OSError)):
            await response(_http_scope("2.4"), receive, send)

        self.assertFalse(outcome.drained)
        self.assertEqual(outcome.job.history[-3:], [PipelineStage.FAILED, PipelineStage.CLEANUP, PipelineStage.DONE])
        self.assertEqual(self._scratch_files(), [])

    async def test_download_failure_aborts_and_cleans_up(self) -> None:
        fetcher = _FakeFetcher(fail_on="https://cdn.example.com/a.mp3")

        with self.assertRaises(FetchError):
            await self._orchestrator(fetcher=fetcher).run_merge(
                video_url="https://cdn.example.com/v.mp4",
                audio_url="https://cdn.example.com/a.mp3",
            )

        self.assertEqual(self._scratch_files(), [])

    async def test_merge_failure_skips_upload_and_cleans_up(self) -> None:
        with self.assertRaises(MergeError):
            await self._orchestrator(engine=_FakeEngine(fail=True)).run_merge(
                video_url="https://cdn.example.com/v.mp4",
                audio_url="https://cdn.example.com/a.mp3",
                dropbox_path="/Merged",
                no_stream=True,
            )

        self.assertEqual(self.publisher.uploads, [])
        self.assertEqual(self._scratch_files(), [])

    async def test_publish_fetches_internal_path_and_uploads_single_chunk(self) -> None:
        fetcher = _FakeFetcher()
        outcome = await self._orchestrator(fetcher=fetcher).publish(
            dropbox_path="/Merged/final.mp4",
            caption="hello",
            privacy="SELF_ONLY",
        )

        self.assertEqual(outcome.publish_id, "pub-1")
        self.assertFalse(outcome.cached)
        self.assertEqual(fetcher.fetched, [CloudInternalPath(path="/Merged/final.mp4")])
        self.assertEqual(
            self.publisher.init_calls,
            [{"token": "token-for-open.tiktokapis.com", "title": "hello", "size": 6, "privacy": "SELF_ONLY"}],
        )
        self.assertEqual(self.publisher.chunks, ["https://upload.example.com/video/1"])
        self.assertEqual(self._scratch_files(), [])

    async def test_concurrent_publish_with_same_key_initialises_once(self) -> None:
        orchestrator = self._orchestrator()

        outcomes = await asyncio.gather(
            *(
                orchestrator.publish(
                    dropbox_path="/Merged/final.mp4",
                    caption="hello",
                    privacy="SELF_ONLY",
                    idempotency_key="key-1",
                )
                for _ in range(3)
            )
        )

        self.assertEqual({outcome.publish_id for outcome in outcomes}, {"pub-1"})
        self.assertEqual(sorted(outcome.cached for outcome in outcomes), [False, True, True])
        self.assertEqual(len(self.publisher.init_calls), 1)

    async def test_publish_without_key_is_never_deduplicated(self) -> None:
        orchestrator = self._orchestrator()
        for _ in range(2):
            await orchestrator.publish(dropbox_path="/Merged/final.mp4", caption="c", privacy="SELF_ONLY")

        self.assertEqual(len(self.publisher.init_calls), 2)
        self.assertEqual(self.store.publish_records, {})

    async def test_publish_requires_tiktok_configuration(self) -> None:
        with self.assertRaisesRegex(ConfigurationError, "TikTok env not configured"):
            await self._orchestrator(tiktok=False).publish(
                dropbox_path="/Merged/final.mp4",
                caption="c",
                privacy="SELF_ONLY",
            )

        self.assertEqual(self.publisher.init_calls, [])

    async def test_post_status_passes_provider_payload_through(self) -> None:
        status = await self._orchestrator().post_status("pub-9")

        self.assertEqual(status["data"]["publish_id"], "pub-9")


if __name__ == "__main__":
    unittest.main()
