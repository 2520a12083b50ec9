"""Per-mailbox poll loop and the auto-reply pipeline.

Each connected mailbox gets one daemon thread. A worker ticks immediately,
then waits ``interval`` seconds after the tick completes, so ticks for one
mailbox never overlap. Mailboxes interleave freely.

One tick: re-check the account is still connected, list unread ids, and for
each id not yet replied to in this process: extract, classify, record,
block-list check, plan quota check, compose, send, remember the id, record
the sent reply, mark processed, mark read. A failing message is logged and
recorded as ``failed``; the rest of the batch carries on.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
import logging
import threading
import time

from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.errors import NotConnectedError, ReplaiError
from ..core.events import broadcaster
from ..db.database import SessionLocal
from ..models.account_model import ConnectedAccount
from ..models.user_model import User, PromptSetting
from .analytics import record_inbound, append_log, mark_processed, record_sent, can_send
from .block_list import is_blocked, list_entries
from .classifier import classify
from .connection_registry import list_accounts, record_sync, update_tokens
from .email_parser import extract_message
from .mailbox_providers import MailboxProvider, provider_for
from .reply_composer import ReplyComposer


@dataclass
class PollHandle:
    key: str
    account_id: int
    mailbox: str
    interval: float
    stop: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None
    last_tick: Optional[dict] = None

    @property
    def alive(self) -> bool:
        return self.thread is not None and self.thread.is_alive()


class MailboxPoller:
    def __init__(self,
                 session_factory: Callable[[], Session] = SessionLocal,
                 provider_factory: Callable[[ConnectedAccount], MailboxProvider] = provider_for,
                 composer: Optional[ReplyComposer] = None,
                 interval: Optional[float] = None,
                 batch_size: Optional[int] = None,
                 publish: Callable[[str, dict], None] = broadcaster.publish):
        s = get_settings()
        self.session_factory = session_factory
        self.provider_factory = provider_factory
        self.composer = composer or ReplyComposer()
        self.interval = s.sync_interval if interval is None else interval
        self.batch_size = batch_size or s.sync_batch_size
        self.publish = publish
        self.log = logging.getLogger(__name__)
        self._handles: Dict[str, PollHandle] = {}
        self._handles_lock = threading.Lock()
        # process-wide record of message ids already replied to; never pruned
        self._dedupe: set = set()
        self._dedupe_lock = threading.Lock()
        self._tick_locks: Dict[int, threading.Lock] = {}

    # -- dedupe -----------------------------------------------------------
    def seen(self, message_id: str) -> bool:
        with self._dedupe_lock:
            return message_id in self._dedupe

    def remember(self, message_id: str):
        with self._dedupe_lock:
            self._dedupe.add(message_id)

    @property
    def dedupe_size(self) -> int:
        with self._dedupe_lock:
            return len(self._dedupe)

    # -- lifecycle --------------------------------------------------------
    def start(self, account: ConnectedAccount) -> PollHandle:
        """Start (or return the running) worker for an account."""
        with self._handles_lock:
            handle = self._handles.get(account.key)
            if handle and handle.alive and not handle.stop.is_set():
                return handle
            handle = PollHandle(key=account.key, account_id=account.id,
                                mailbox=account.email_address, interval=self.interval)
            handle.thread = threading.Thread(target=self._loop, args=(handle,),
                                             name=f"poll-{account.email_address}", daemon=True)
            self._handles[account.key] = handle
        handle.thread.start()
        self.log.info("poller_started", extra={"mailbox": handle.mailbox, "provider": account.provider})
        return handle

    def start_all(self) -> int:
        """Start workers for every stored account that is not paused."""
        db = self.session_factory()
        try:
            accounts = list_accounts(db, include_paused=False)
            for account in accounts:
                self.start(account)
            return len(accounts)
        finally:
            db.close()

    def stop(self, mailbox_address: str) -> int:
        """Cancel every handle tagged with the address; an in-flight tick finishes."""
        address = (mailbox_address or '').lower()
        with self._handles_lock:
            keys = [k for k, h in self._handles.items() if h.mailbox.lower() == address]
            handles = [self._handles.pop(k) for k in keys]
        for h in handles:
            h.stop.set()
        if handles:
            self.log.info("poller_stopped", extra={"mailbox": mailbox_address})
        return len(handles)

    def stop_keys(self, keys: List[str]) -> int:
        """Cancel the handles for these account keys only."""
        with self._handles_lock:
            handles = [self._handles.pop(k) for k in keys if k in self._handles]
        for h in handles:
            h.stop.set()
            self.log.info("poller_stopped", extra={"mailbox": h.mailbox})
        return len(handles)

    def stop_all(self):
        with self._handles_lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for h in handles:
            h.stop.set()

    def status(self, user_mailboxes: Optional[List[str]] = None) -> Dict:
        with self._handles_lock:
            handles = list(self._handles.values())
        if user_mailboxes is not None:
            wanted = {m.lower() for m in user_mailboxes}
            handles = [h for h in handles if h.mailbox.lower() in wanted]
        return {
            'interval': self.interval,
            'batch_size': self.batch_size,
            'dedupe_size': self.dedupe_size,
            'active': [
                {'mailbox': h.mailbox, 'account_id': h.account_id, 'alive': h.alive, 'last_tick': h.last_tick}
                for h in handles
            ],
        }

    def _loop(self, handle: PollHandle):
        try:
            while not handle.stop.is_set():
                try:
                    summary = self.run_tick(handle.account_id)
                except Exception:
                    # the worker outlives any single tick
                    self.log.exception("tick_error", extra={"mailbox": handle.mailbox})
                    summary = {'error': 'tick_error'}
                if summary is None:
                    self.log.info("mailbox_gone", extra={"mailbox": handle.mailbox})
                    break
                handle.last_tick = summary
                handle.stop.wait(handle.interval)
        finally:
            with self._handles_lock:
                if self._handles.get(handle.key) is handle:
                    del self._handles[handle.key]

    # -- ticks ------------------------------------------------------------
    def run_once(self, account_id: int) -> Dict:
        """Manual trigger: one synchronous tick."""
        summary = self.run_tick(account_id)
        if summary is None:
            raise NotConnectedError('Connected account not found', account_id=account_id)
        return summary

    def _tick_lock(self, account_id: int) -> threading.Lock:
        with self._handles_lock:
            return self._tick_locks.setdefault(account_id, threading.Lock())

    def run_tick(self, account_id: int) -> Optional[Dict]:
        """One tick for the account; None when the account is no longer connected."""
        with self._tick_lock(account_id):
            return self._tick(account_id)

    def _tick(self, account_id: int) -> Optional[Dict]:
        started = time.perf_counter()
        db = self.session_factory()
        try:
            account = db.get(ConnectedAccount, account_id)
            if account is None:
                return None
            summary = {'ts': datetime.now(timezone.utc).isoformat(), 'fetched': 0,
                       'replied': 0, 'skipped': 0, 'failed': 0}
            if account.sync_paused:
                summary['paused'] = True
                return summary
            user = db.get(User, account.user_id)
            try:
                provider = self.provider_factory(account)
            except ReplaiError as e:
                summary['error'] = e.message
                record_sync(db, account, error=e.message)
                return summary
            try:
                ids = provider.list_unread(self.batch_size)
                blocked = list_entries(db, account.user_id)
                setting = db.query(PromptSetting).filter(PromptSetting.user_id == account.user_id).first()
                instructions = setting.instructions if setting else None
                for message_id in ids:
                    if self.seen(message_id):
                        continue
                    summary['fetched'] += 1
                    outcome = self._process(db, provider, account, user, message_id, blocked, instructions)
                    summary[outcome] += 1
                self._persist_tokens(db, account, provider)
                record_sync(db, account)
            except ReplaiError as e:
                db.rollback()
                self.log.warning("tick_failed", extra={"mailbox": account.email_address, "error_type": type(e).__name__})
                summary['error'] = e.message
                record_sync(db, account, error=e.message)
            finally:
                provider.close()
            summary['duration_ms'] = round((time.perf_counter() - started) * 1000, 1)
            self.log.info("tick_complete", extra={
                "mailbox": account.email_address, "fetched": summary['fetched'], "replied": summary['replied'],
                "skipped": summary['skipped'], "failed": summary['failed'], "duration_ms": summary['duration_ms'],
            })
            return summary
        finally:
            db.close()

    def _persist_tokens(self, db: Session, account: ConnectedAccount, provider: MailboxProvider):
        state = provider.token_state()
        if state:
            update_tokens(db, account, state['access_token'], state.get('refresh_token'), state.get('token_expiry'))
            self.log.info("tokens_refreshed", extra={"mailbox": account.email_address})

    def _process(self, db: Session, provider: MailboxProvider, account: ConnectedAccount, user: Optional[User],
                 message_id: str, blocked: List[str], instructions: Optional[str]) -> str:
        """Run the pipeline for one message; returns replied | skipped | failed."""
        ctx = {"mailbox": account.email_address, "message_id": message_id}
        fetch_start = time.perf_counter()
        inbound = None
        try:
            extracted = extract_message(provider.get_message(message_id))
            labels = classify(extracted.subject, extracted.plain_body, extracted.from_, extracted.headers)
            inbound = record_inbound(db, account, extracted, labels)
            if inbound.processed:
                # replied before a restart; only the read flag is missing
                self.remember(message_id)
                self._mark_read(provider, ctx)
                return 'skipped'

            if is_blocked(extracted.from_, blocked):
                append_log(db, inbound, 'skipped', 'Sender is on the block list')
                self.remember(message_id)
                # read so it stops occupying the unread batch
                self._mark_read(provider, ctx)
                self.log.info("message_blocked", extra=ctx)
                return 'skipped'
            if user is None or not can_send(user):
                append_log(db, inbound, 'skipped', 'Plan email limit reached', repeat=False)
                self.log.info("quota_exceeded", extra={**ctx, "user_id": account.user_id})
                return 'skipped'

            append_log(db, inbound, 'processing', 'Generating reply')
            composed = self.composer.compose(extracted, account.email_address,
                                             (user.name or account.display_name or ''), instructions)
            sent_id = provider.send(composed)
        except Exception as e:
            self.log.exception("message_failed", extra={**ctx, "error_type": type(e).__name__})
            self._record_failure(db, inbound, e)
            return 'failed'

        self.remember(message_id)
        response_ms = int((time.perf_counter() - fetch_start) * 1000)
        try:
            record_sent(db, account, inbound, composed, response_ms, provider_message_id=sent_id)
            mark_processed(db, inbound)
        except Exception:
            db.rollback()
            self.log.exception("post_send_persist_failed", extra=ctx)
        self._mark_read(provider, ctx)
        self.log.info("reply_sent", extra={**ctx, "category": inbound.category, "sentiment": inbound.sentiment,
                                           "duration_ms": response_ms})
        self.publish("reply_sent", {"mailbox": account.email_address, "message_id": message_id,
                                    "to": composed.to, "subject": composed.subject})
        return 'replied'

    def _mark_read(self, provider: MailboxProvider, ctx: dict):
        try:
            provider.mark_read(ctx["message_id"])
        except Exception:
            self.log.exception("mark_read_failed", extra=ctx)

    def _record_failure(self, db: Session, inbound, error: Exception):
        db.rollback()
        if inbound is None:
            return
        try:
            append_log(db, inbound, 'failed', f"{type(error).__name__}: {error}")
        except Exception:
            db.rollback()
            self.log.exception("failure_record_failed", extra={"message_id": inbound.provider_message_id})
