import http.client
import json
import logging
import socket
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from .config import AppConfig
from .credentials import Credential, CredentialPool
from .model_registry import MODEL_REGISTRY, ModelDescriptor, best_model, model_for_context

LOGGER = logging.getLogger(__name__)

MAX_ATTEMPTS_PER_DISPATCH = 3
READ_CHUNK_BYTES = 8192


class DispatchError(RuntimeError):
    pass


class AttemptError(DispatchError):
    pass


class AttemptTimeoutError(AttemptError):
    pass


class TransportError(AttemptError):
    pass


class UpstreamStatusError(AttemptError):
    def __init__(self, status: int, detail: str) -> None:
        super().__init__(f"HTTP {status}: {detail}")
        self.status = status
        self.detail = detail


class EmptyCompletionError(AttemptError):
    pass


class DispatchExhaustedError(DispatchError):
    def __init__(self, last_error: Optional[Exception], attempt_log: Sequence["DispatchAttempt"]) -> None:
        reason = str(last_error) if last_error else "no attempt was made"
        super().__init__(f"All API keys failed after {len(attempt_log)} attempt(s): {reason}")
        self.last_error = last_error
        self.attempt_log = list(attempt_log)

    @property
    def attempts(self) -> int:
        return len(self.attempt_log)

    @property
    def timed_out(self) -> bool:
        return isinstance(self.last_error, AttemptTimeoutError)


@dataclass(frozen=True)
class HttpResponse:
    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class DispatchAttempt:
    credential_name: str
    model_id: str
    attempt_index: int
    outcome: str
    error: str = ""


class HttpClient(Protocol):
    def post(
        self, url: str, headers: Mapping[str, str], body: bytes, timeout_seconds: float
    ) -> HttpResponse:
        ...


class UrllibHttpClient:
    """POST over urllib; non-2xx responses are returned rather than raised.

    Timeouts raise ``TimeoutError``. Refused connections and malformed or
    truncated responses raise ``ConnectionError``. The body must arrive
    within ``timeout_seconds`` of the request start, not just per read.
    """

    def post(
        self, url: str, headers: Mapping[str, str], body: bytes, timeout_seconds: float
    ) -> HttpResponse:
        request = urllib.request.Request(url=url, data=body, method="POST", headers=dict(headers))
        deadline = time.monotonic() + timeout_seconds
        try:
            with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
                raw = _read_body(response, deadline, timeout_seconds)
                return HttpResponse(status=response.status, text=raw.decode("utf-8", errors="replace"))
        except urllib.error.HTTPError as exc:
            try:
                details = exc.read().decode("utf-8", errors="replace")
            except (http.client.HTTPException, OSError) as read_exc:
                LOGGER.warning("Could not read error body for HTTP %s: %s", exc.code, read_exc)
                details = ""
            finally:
                exc.close()
            return HttpResponse(status=exc.code, text=details)
        except urllib.error.URLError as exc:
            if isinstance(exc.reason, socket.timeout):
                raise TimeoutError(f"Request timed out after {timeout_seconds}s") from exc
            raise ConnectionError(f"Network error: {exc.reason}") from exc
        except socket.timeout as exc:
            raise TimeoutError(f"Request timed out after {timeout_seconds}s") from exc
        except http.client.HTTPException as exc:
            raise ConnectionError(f"Malformed response: {exc!r}") from exc


def _read_body(response: Any, deadline: float, timeout_seconds: float) -> bytes:
    chunks: List[bytes] = []
    while True:
        chunk = response.read1(READ_CHUNK_BYTES)
        if not chunk:
            break
        chunks.append(chunk)
        if time.monotonic() > deadline:
            raise TimeoutError(f"Response not complete after {timeout_seconds}s")
    raw = b"".join(chunks)
    expected = response.headers.get("Content-Length", "")
    if expected.isdigit() and len(raw) < int(expected):
        raise http.client.IncompleteRead(raw, int(expected) - len(raw))
    return raw


class Dispatcher:
    """Sends one prompt to the chat-completion endpoint, rotating API keys on failure."""

    def __init__(
        self,
        pool: CredentialPool,
        http_client: Optional[HttpClient] = None,
        registry: Sequence[ModelDescriptor] = MODEL_REGISTRY,
        config: Optional[AppConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.pool = pool
        self.http_client = http_client or UrllibHttpClient()
        self.registry = tuple(registry)
        self.config = config or AppConfig()
        self.clock = clock

    def resolve_model(self, context_length: Optional[int] = None) -> ModelDescriptor:
        if context_length:
            return model_for_context(context_length, self.registry)
        return best_model(self.registry)

    def dispatch(
        self,
        prompt: str,
        max_tokens: int = 200,
        temperature: float = 0.3,
        context_length: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        total_timeout_seconds: Optional[float] = None,
    ) -> str:
        """Return the completion text, trying up to ``min(active keys, 3)`` keys.

        ``timeout_seconds`` bounds each attempt. ``total_timeout_seconds``
        bounds the whole call: no attempt starts once it is spent, and each
        attempt gets at most what is left of it.
        """
        model = self.resolve_model(context_length)
        timeout = timeout_seconds if timeout_seconds is not None else self.config.request_timeout_seconds
        deadline = None if total_timeout_seconds is None else self.clock() + total_timeout_seconds
        budget = min(self.pool.active_count(), MAX_ATTEMPTS_PER_DISPATCH)
        attempts: List[DispatchAttempt] = []
        last_error: Optional[AttemptError] = None

        for attempt in range(budget):
            attempt_timeout = timeout
            if deadline is not None:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    LOGGER.warning("Deadline reached after %s attempt(s)", attempt)
                    last_error = AttemptTimeoutError(
                        f"No time left for attempt {attempt + 1} after {total_timeout_seconds}s"
                    )
                    break
                attempt_timeout = min(timeout, remaining)
            credential = self.pool.current()
            LOGGER.info("Attempt %s: using key %s with model %s", attempt + 1, credential.name, model.name)
            try:
                content = self._send(credential, model, prompt, max_tokens, temperature, attempt_timeout)
            except AttemptError as exc:
                last_error = exc
                LOGGER.warning("Error with key %s: %s", credential.name, exc)
                self.pool.record_error(credential)
                self.pool.advance()
                attempts.append(
                    DispatchAttempt(credential.name, model.id, attempt, _outcome_for(exc), str(exc))
                )
                continue

            self.pool.record_success(credential)
            attempts.append(DispatchAttempt(credential.name, model.id, attempt, "success"))
            LOGGER.info("Success with key %s and model %s", credential.name, model.name)
            return content

        raise DispatchExhaustedError(last_error, attempts) from last_error

    def stats(self) -> Dict[str, Any]:
        return self.pool.stats()

    def _send(
        self,
        credential: Credential,
        model: ModelDescriptor,
        prompt: str,
        max_tokens: int,
        temperature: float,
        timeout_seconds: float,
    ) -> str:
        payload = {
            "model": model.id,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {credential.key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.config.referer,
            "X-Title": self.config.app_title,
        }
        body = json.dumps(payload).encode("utf-8")
        try:
            response = self.http_client.post(self.config.api_url, headers, body, timeout_seconds)
        except TimeoutError as exc:
            raise AttemptTimeoutError(str(exc) or "Request timed out") from exc
        except (OSError, http.client.HTTPException) as exc:
            raise TransportError(str(exc) or type(exc).__name__) from exc

        if not response.ok:
            raise UpstreamStatusError(response.status, response.text[:500])
        return extract_completion_text(response.text)


def extract_completion_text(raw: str) -> str:
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        raise EmptyCompletionError(f"Response is not valid JSON: {exc}") from exc
    try:
        content = parsed["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        content = None
    if not isinstance(content, str) or not content.strip():
        raise EmptyCompletionError("No content received from API")
    return content


def _outcome_for(exc: AttemptError) -> str:
    if isinstance(exc, AttemptTimeoutError):
        return "timeout"
    if isinstance(exc, UpstreamStatusError):
        return "http_error"
    if isinstance(exc, EmptyCompletionError):
        return "empty"
    return "transport_error"
