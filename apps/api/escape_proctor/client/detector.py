"""
Page-side tab/app switch detector.

One instance per page load. Browser signals are mapped onto three events:
hidden (visibilitychange, blur, pagehide), visible (visibilitychange, focus)
and cooldown expiry. Redundant signals for one real absence collapse into a
single report.
"""
from typing import Optional
from .. import config

IDLE, HIDDEN, COOLDOWN = 'idle', 'hidden', 'cooldown'

class SessionDetector:
    def __init__(self, min_hidden_ms:Optional[int]=None, cooldown_ms:Optional[int]=None):
        self.min_hidden_ms = config.min_hidden_ms() if min_hidden_ms is None else min_hidden_ms
        self.cooldown_ms = config.client_cooldown_ms() if cooldown_ms is None else cooldown_ms
        self.state = IDLE; self.hidden_since = None
        self.cooldown_until = None; self.submitted = False

    def visibility_hidden(self, ts:float):
        self.tick(ts)
        # signals during cooldown belong to the absence just reported
        if self.submitted or self.state != IDLE: return
        self.state = HIDDEN; self.hidden_since = ts

    def blur(self, ts:float): self.visibility_hidden(ts)
    def pagehide(self, ts:float): self.visibility_hidden(ts)

    def visibility_visible(self, ts:float)->Optional[int]:
        """Return the hidden duration to report, or None when nothing should be sent."""
        if self.state != HIDDEN: return None
        hidden_ms = int(max(0, ts - self.hidden_since)); self.hidden_since = None
        if hidden_ms < self.min_hidden_ms:
            self.state = IDLE; return None
        self.state = COOLDOWN; self.cooldown_until = ts + self.cooldown_ms
        return hidden_ms

    def focus(self, ts:float)->Optional[int]: return self.visibility_visible(ts)

    def cooldown_expired(self):
        if self.state == COOLDOWN: self.state = IDLE; self.cooldown_until = None

    def tick(self, ts:float):
        if self.state == COOLDOWN and ts >= self.cooldown_until: self.cooldown_expired()

    def mark_submitted(self):
        """After the final submit nothing is detected any more."""
        self.submitted = True; self.state = IDLE; self.hidden_since = None; self.cooldown_until = None

    @property
    def should_heartbeat(self)->bool:
        return not self.submitted and self.state != HIDDEN
