# tribeserver

`tribeserver` holds the request handlers of a community platform API built
around people profiles, organizations and bounties, together with the small
helpers they rely on.

- `tribeserver.web` – `Request` and `Response` objects and `json_response`.
- `tribeserver.people` – `PeopleHandler` for profiles, badges, assets and
  admin ticket removal, plus one-pass background jobs.
- `tribeserver.organizations` – `OrganizationHandler` for organizations,
  members, roles (`Role`), budgets, payment history and invoice polling.
- `tribeserver.metrics` – `MetricHandler` for bounty and payment metrics and
  CSV export.
- `tribeserver.websocket` – a `Pool` of websocket `Client`s that rebroadcasts
  every incoming `Message` to all connected clients.
- `tribeserver.helpers`, `tribeserver.pagination`, `tribeserver.twitter` –
  number parsing, invoice amounts, pagination, and twitter identity checks.

## Requests and responses

A handler method takes a `Request` and returns a `Response`. A `Request`
carries `method`, `path`, `query_string`, `body`, `url_params` (values
captured from the route), `pubkey` (the caller's public key, empty for
anonymous callers), `headers` and `host`. `Request.json()` decodes the body
and raises `ValueError` when it is not valid JSON; `query_param(name)` and
`url_param(name)` return an empty string when the value is missing.

`json_response(status, payload)` encodes the payload as compact JSON
followed by a newline. Dataclasses, objects with `to_dict()`, dates, enums
and sets are encoded too. `Response.json()` decodes the body again.

Handlers that need a caller answer `401` when `pubkey` is empty, and a body
that is not valid JSON gets `406`.

```python
from tribeserver.people import PeopleHandler
from tribeserver.web import Request

handler = PeopleHandler(db)
response = handler.get_person_by_pubkey(Request(url_params={"pubkey": "some-pubkey"}))
response.status       # 200
response.json()       # whatever db.get_person_by_pubkey returned
```

## The database object

Every handler is built around a `db` object that you supply. The handlers
call snake_case methods on it, such as `get_person_by_pubkey`,
`create_or_edit_person`, `get_organization_by_uuid`, `user_has_access`,
`total_bounties_posted` or `get_bounties_by_date_range`. Records may be
dicts or objects with attributes.

Other collaborators are passed in as well:

- `PeopleHandler(db, verify_tribe_uuid=None, fetch_asset_balances=..., fetch_asset_list=..., admin_pubkeys=None, new_id=...)`;
  when `admin_pubkeys` is `None` the comma-separated `ADMIN_PUBKEYS`
  environment variable is used. `get_asset_by_pubkey` and `get_asset_list`
  are the default asset fetchers; they honour `TEST_MODE`, `TEST_ASSET_URL`
  and `ASSET_LIST_URL`.
- `OrganizationHandler(db, generate_bounty_response=None, get_lightning_invoice=None, validate=None, new_id=...)`.
- `MetricHandler(db, cache=None, presigner=None, s3_folder="", session=None)`;
  with a `cache` the bounty statistics are stored per date range, and
  `metrics_csv` needs a `presigner` to upload the CSV and return its
  download URL.

`process_twitter_confirmations(db, confirm)` and
`process_github_issues(db, get_issue)` each make one pass and return how
many records they updated; scheduling them is up to you.

## Websockets

```python
from tribeserver.websocket import Pool, serve_ws, check_origin

pool = Pool(store=None)
client = serve_ws(pool, connection)   # registers, then reads until closed
```

A connection needs `receive()` returning `(message_type, data)`,
`send_json(obj)` and `close()`. `check_origin(config_host, request_host)`
only restricts hosts when `config_host` is `https://people.sphinx.chat`.

## Helpers

```python
from tribeserver.helpers import convert_string_to_uint, get_invoice_amount
from tribeserver.pagination import get_pagination_params, build_keysend_body_data

convert_string_to_uint("20")            # 20
params = get_pagination_params({"page": "2", "limit": "10"})
params.offset                           # 10
build_keysend_body_data(100, "receiver-pubkey", "")
```

`convert_string_to_uint` and `convert_string_to_int` raise `ValueError` on
text that is not a 32-bit number. `get_invoice_amount` returns the amount of
a Lightning payment request in satoshis, or `0` when it cannot be decoded
(`decode_invoice_msat` raises `InvoiceDecodeError` instead).
`get_random_token(length)` gives up to 56 base32 characters.

In `tribeserver.twitter`, `extract_verification_code` finds the code in a
list of tweet texts, and `confirm_identity_tweet(username, token, verifier)`
runs the whole lookup, raising `TwitterError` when no matching tweet is
found:

```python
confirm_identity_tweet("someuser", token="token", verifier=my_verifier)
```

## What the package does not do

There is no router, no WSGI or HTTP server and no command to start one: you
map paths to handler methods and fill in `Request.url_params` and
`Request.pubkey` yourself. There are no handlers for tribes, leaderboards or
relay invoices, no authentication, and no database or storage layer – the
`db`, cache and presigner objects all come from you.