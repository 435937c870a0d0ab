'''
retry controller for the courier dispatch step

Each failed attempt is retried with exponential backoff
(``retry_delay * 2 ** attempt``) until ``max_retries`` is used up. Retried
attempts run on a clone of the configuration flagged ``is_retry_request``;
a configuration that already carries that flag when it enters dispatch is
never retried, which stops a caller that resubmits ``error.config`` from
starting a second retry chain.

Raises
------
HttpClientError
    _the error of the last attempt, carrying that attempt's config_
'''
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from courier._config import RequestConfig
from courier._errors import HttpClientError, InvalidConfigError, URLRejectedError
from courier._response import Response


logger = logging.getLogger(__name__)


Sender = Callable[[RequestConfig], Awaitable[Response]]
Sleep = Callable[[float], Awaitable[None]]


class RetryController:

    def __init__(self, *, sleep: Sleep = asyncio.sleep) -> None:
        '''
        Parameters
        ----------
        sleep : Callable[[float], Awaitable[None]], optional
            The non-blocking sleep used between attempts,
            by default asyncio.sleep
        '''
        self._sleep: Sleep = sleep

    @staticmethod
    def get_delay(attempt: int, base_delay: float) -> float:
        return base_delay * (2 ** attempt)

    @staticmethod
    def should_retry(
        error: BaseException,
        attempt: int,
        max_retries: int,
        origin: RequestConfig,
    ) -> bool:
        '''
        Decide whether a failed attempt gets another try.

        Parameters
        ----------
        error : BaseException
            The failure of attempt ``attempt``.
        attempt : int
            0-based number of the attempt that failed.
        max_retries : int
        origin : RequestConfig
            The configuration that entered dispatch.

        Returns
        -------
        bool
        '''
        if attempt >= max_retries:
            return False
        if not isinstance(error, HttpClientError) or error.config is None:
            return False
        if isinstance(error, (URLRejectedError, InvalidConfigError)):
            return False
        return not origin.is_retry_request

    async def run(self, send: Sender, config: RequestConfig) -> Response:
        '''
        Call ``send`` until it succeeds or the failure is not retryable.

        Parameters
        ----------
        send : Callable[[RequestConfig], Awaitable[Response]]
            Performs a single attempt.
        config : RequestConfig

        Returns
        -------
        Response
        '''
        attempt = 0
        current = config
        while True:
            try:
                return await send(current)
            except Exception as exc:
                if not self.should_retry(exc, attempt, current.max_retries, config):
                    if attempt:
                        logger.warning(
                            f'{current.method} {current.url} failed after '
                            f'{attempt + 1} attempts: {exc}'
                        )
                    raise

                delay = self.get_delay(attempt, current.retry_delay)
                logger.debug(
                    f'{current.method} {current.url} failed ({exc}), retrying in '
                    f'{delay}s (attempt {attempt + 1}/{current.max_retries})'
                )
                current = current.clone()
                current.is_retry_request = True
                await self._sleep(delay)
                attempt += 1
