import asyncio
import json
import logging
import sys

from courier import HttpClient, HttpClientError, Response
from courier.plugins import log_requests, user_agent


def response_str(response: Response) -> str:
    sep = '-------------------------'
    result = f'\n{sep}\n{response.status} {response.status_text}\n'
    for name, value in response.headers.items():
        result += f'{name}: {value}\n'

    body = response.data
    if isinstance(body, (dict, list)):
        body = json.dumps(body, indent=2)
    result += f'\n{body}\n{sep}'
    return result


async def main() -> int:
    logging.basicConfig(level=logging.DEBUG, format='%(name)s: %(message)s')

    if len(sys.argv) < 2:
        url = input('Enter a URL to fetch: ').strip()
    else:
        url = sys.argv[1].strip()

    exit_code = 1
    async with HttpClient(timeout=10, max_retries=2, retry_delay=0.5) as client:
        client.use(user_agent()).use(log_requests())
        try:
            response = await client.get(url)
            print(response_str(response))
            exit_code = 0
        except HttpClientError as exc:
            print(f'Request failed: {exc}')
            if exc.response is not None:
                print(response_str(exc.response))

    return exit_code


if __name__ == '__main__':
    sys.exit(
        asyncio.run(main())
    )
