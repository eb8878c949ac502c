import threading
from functools import cached_property
from typing import Dict

from app.core.settings import settings
from execution.balance_watcher import BalanceWatcher
from execution.broadcaster import Broadcaster
from execution.chain_reader import Web3ChainReader
from execution.tx_builder import TransactionBuilder
from observability import Metrics
from sending import SendCoordinator
from signing import RemoteKeyResolver, get_signer_channel


class Container:
    def __init__(self):
        # Observability
        self.metrics = Metrics(namespace=settings.WALLETSEND_SERVICE_NAME)

        # Chain access (lazy: no network until first call)
        self.chain_reader = Web3ChainReader(settings.EVM_RPC_URL, timeout=settings.HTTP_TIMEOUT_SEC)
        self.broadcaster = Broadcaster(settings.EVM_RPC_URL, timeout=settings.HTTP_TIMEOUT_SEC)
        self.tx_builder = TransactionBuilder(self.chain_reader)

        # One watcher per displayed address
        self._watchers: Dict[str, BalanceWatcher] = {}
        self._watchers_lock = threading.Lock()

    # Signer and key service need their URLs; resolved on first use so that
    # importing the container never requires them.
    @cached_property
    def signer_channel(self):
        return get_signer_channel(settings, metrics=self.metrics)

    @cached_property
    def key_resolver(self):
        return RemoteKeyResolver(settings.KEY_SERVICE_URL, http_timeout_sec=settings.HTTP_TIMEOUT_SEC)

    @cached_property
    def coordinator(self) -> SendCoordinator:
        return SendCoordinator(
            chain_id=settings.CHAIN_ID,
            builder=self.tx_builder,
            signer_channel=self.signer_channel,
            broadcaster=self.broadcaster,
            key_resolver=self.key_resolver,
            default_gas_limit=settings.DEFAULT_GAS_LIMIT,
            metrics=self.metrics,
        )

    def balance_watcher(self, address: str, *, start: bool = True) -> BalanceWatcher:
        key = address.lower()
        with self._watchers_lock:
            watcher = self._watchers.get(key)
            if watcher is None:
                watcher = BalanceWatcher(
                    self.chain_reader,
                    address,
                    interval_sec=settings.BALANCE_POLL_INTERVAL_SEC,
                    metrics=self.metrics,
                )
                self._watchers[key] = watcher
        if start:
            watcher.start()
        return watcher

    def stop_watchers(self) -> None:
        with self._watchers_lock:
            watchers = list(self._watchers.values())
            self._watchers.clear()
        for w in watchers:
            w.stop()

    def shutdown(self) -> None:
        self.stop_watchers()
        if "signer_channel" in self.__dict__:
            self.signer_channel.close()


global_container = Container()
