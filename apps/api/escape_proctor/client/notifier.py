"""
Async client for the escape API as a level page uses it.

Each server notification is one awaitable call with a typed result. Retries
follow an explicit RetryPolicy: transport errors and 5xx responses are retried
with exponential backoff, 4xx responses are not.
"""
import asyncio, logging
from typing import NamedTuple, Optional, Union
import httpx
from .. import config
from .detector import SessionDetector

logger = logging.getLogger(__name__)

class Penalty(NamedTuple):
    score_deducted: int
    current_score: int
    tab_switch_count: int
    message: str

class Ignored(NamedTuple):
    reason: str

class Failed(NamedTuple):
    error: str
    attempts: int

TabSwitchResult = Union[Penalty, Ignored, Failed]

class RetryPolicy:
    def __init__(self, attempts:int=3, base_delay_ms:float=250, multiplier:float=2.0):
        self.attempts = max(1, int(attempts)); self.base_delay_ms = base_delay_ms; self.multiplier = multiplier

    @classmethod
    def from_config(cls):
        c = config.section('client')
        return cls(c.get('retry_attempts', 3), c.get('retry_base_delay_ms', 250), c.get('retry_multiplier', 2.0))

    def delay_s(self, attempt:int)->float:
        """Sleep before retry number `attempt` (1-based)."""
        return self.base_delay_ms * (self.multiplier ** (attempt - 1)) / 1000.0

class RequestFailed(Exception):
    def __init__(self, error:str, attempts:int):
        super().__init__(error); self.error = error; self.attempts = attempts

class EscapeClient:
    def __init__(self, team_id:str, base_url:Optional[str]=None, token:Optional[str]=None,
                 policy:Optional[RetryPolicy]=None, transport:Optional[httpx.AsyncBaseTransport]=None, timeout:Optional[float]=None):
        c = config.section('client')
        self.team_id = team_id; self.policy = policy or RetryPolicy.from_config()
        headers = {'x-exam': token if token is not None else str(config.section('auth').get('exam_token', ''))}
        self._http = httpx.AsyncClient(base_url=base_url or c.get('base_url', 'http://localhost:8000'), headers=headers,
                                       timeout=timeout or float(c.get('timeout_s', 5)), transport=transport)

    async def __aenter__(self): return self
    async def __aexit__(self, *exc): await self.close()
    async def close(self): await self._http.aclose()

    async def _post(self, path:str, payload:dict)->dict:
        last = 'no attempt made'
        for attempt in range(1, self.policy.attempts + 1):
            if attempt > 1: await asyncio.sleep(self.policy.delay_s(attempt - 1))
            try:
                r = await self._http.post(path, json=payload)
            except httpx.TransportError as e:
                last = f"{type(e).__name__}: {e}"; logger.warning("POST %s attempt %s failed: %s", path, attempt, last); continue
            if r.status_code >= 500:
                last = f"HTTP {r.status_code}"; logger.warning("POST %s attempt %s failed: %s", path, attempt, last); continue
            if r.status_code >= 400: raise RequestFailed(f"HTTP {r.status_code}", attempt)
            return r.json()
        raise RequestFailed(last, self.policy.attempts)

    async def start(self)->dict:
        return await self._post('/api/escape/start', {'team_id': self.team_id})

    async def heartbeat(self)->bool:
        try:
            return bool((await self._post('/api/escape/heartbeat', {'team_id': self.team_id})).get('ok'))
        except RequestFailed as e:
            logger.warning("Heartbeat failed for %s: %s", self.team_id, e.error); return False

    async def report_tab_switch(self, hidden_ms:Optional[int])->TabSwitchResult:
        try:
            data = await self._post('/api/escape/tab-switch', {'team_id': self.team_id, 'hiddenMs': hidden_ms})
        except RequestFailed as e:
            return Failed(e.error, e.attempts)
        if data.get('action') == 'penalty':
            return Penalty(int(data.get('scoreDeducted', 0)), int(data.get('currentScore', 0)),
                           int(data.get('tabSwitchCount', 0)), data.get('message', ''))
        if data.get('action') == 'ignored': return Ignored(data.get('reason', ''))
        return Failed(str(data.get('error', 'unexpected response')), 1)

    async def on_visible(self, detector:SessionDetector, ts:float)->Optional[TabSwitchResult]:
        """Feed a visible signal to the detector and report the absence if it produced one."""
        hidden_ms = detector.visibility_visible(ts)
        if hidden_ms is None: return None
        return await self.report_tab_switch(hidden_ms)

async def run_heartbeats(client:EscapeClient, detector:SessionDetector, stop:asyncio.Event, interval_ms:Optional[int]=None)->int:
    """Heartbeat while the page is foregrounded until `stop` is set; returns the number sent."""
    interval = (config.heartbeat_interval_ms() if interval_ms is None else interval_ms) / 1000.0
    sent = 0
    while not stop.is_set():
        if detector.should_heartbeat:
            await client.heartbeat(); sent += 1
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    return sent
