import hashlib
import hmac
import json
import time
import uuid
from typing import Any, Dict, List, Optional

SEAL_EVENT = "RUN_COMPLETE"


def _digest(prev_hash: str, body: Dict[str, Any]) -> str:
    return hashlib.sha256((prev_hash + json.dumps(body, sort_keys=True, default=str)).encode()).hexdigest()


def _signature(key: str, run_id: str, final_hash: str) -> str:
    return hmac.new(key.encode(), f"{run_id}:{final_hash}".encode(), hashlib.sha256).hexdigest()


class AuditTrail:
    """
    Append-only record of what the scan tasks of one CLI run did.

    Each event is hashed together with the hash of the event before it, so
    editing, dropping or reordering lines breaks the chain. When a signing
    key is configured (`SODASCAN_AUDIT_KEY`), `seal()` also signs the final
    hash, and `verify()` with the same key checks that signature.
    """

    def __init__(self, run_id: Optional[str] = None, log_file: Optional[str] = None,
                 signing_key: Optional[str] = None):
        self.run_id = run_id or str(uuid.uuid4())
        self.log_file = log_file
        self.signing_key = signing_key
        self.chain_hash = hashlib.sha256(self.run_id.encode()).hexdigest()
        self.events: List[Dict[str, Any]] = []
        self.sealed = False

        self.log_event("RUN_START", {"run_id": self.run_id})

    def log_event(self, event_type: str, data: Dict[str, Any]) -> str:
        if self.sealed:
            raise RuntimeError(f"Audit trail {self.run_id} is sealed")

        body = {"type": event_type, "timestamp": time.time(), "data": data, "prev_hash": self.chain_hash}
        self.chain_hash = _digest(self.chain_hash, body)
        record = dict(body, current_hash=self.chain_hash)
        self.events.append(record)

        if self.log_file:
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, default=str) + "\n")
        return self.chain_hash

    def seal(self) -> Dict[str, Any]:
        """Closes the trail; no event can be added afterwards."""
        final_hash = self.chain_hash
        signature = _signature(self.signing_key, self.run_id, final_hash) if self.signing_key else None
        self.log_event(SEAL_EVENT, {"final_hash": final_hash, "signature": signature})
        self.sealed = True
        return {
            "run_id": self.run_id,
            "final_hash": final_hash,
            "signed": signature is not None,
            "audit_file": self.log_file or "",
        }

    @staticmethod
    def load(path: str) -> List[Dict[str, Any]]:
        with open(path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]

    @staticmethod
    def verify_chain(events: List[Dict[str, Any]]) -> bool:
        """Recomputes every hash of a list of recorded events, starting from the run id."""
        if not events or events[0].get("type") != "RUN_START":
            return False
        expected_prev = hashlib.sha256(str((events[0].get("data") or {}).get("run_id", "")).encode()).hexdigest()
        for record in events:
            if record.get("prev_hash") != expected_prev:
                return False
            body = {k: record.get(k) for k in ("type", "timestamp", "data", "prev_hash")}
            if _digest(record["prev_hash"], body) != record.get("current_hash"):
                return False
            expected_prev = record["current_hash"]
        return True

    @staticmethod
    def verify(events: List[Dict[str, Any]], signing_key: Optional[str] = None) -> bool:
        """
        Checks the chain and, when a key is given, that the trail was sealed
        with that key. A trail that was never sealed fails keyed verification.
        """
        if not AuditTrail.verify_chain(events):
            return False
        if signing_key is None:
            return True

        seal = events[-1]
        if seal["type"] != SEAL_EVENT:
            return False
        signature = seal["data"].get("signature")
        final_hash = seal["data"].get("final_hash")
        if not signature or final_hash != seal["prev_hash"]:
            return False
        expected = _signature(signing_key, events[0]["data"]["run_id"], final_hash)
        return hmac.compare_digest(expected, signature)
