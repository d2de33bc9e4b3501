# bdjuno

This package holds modules that turn chain data into records and hand those
records to a database object. The chain data can be a genesis state, a block
or a transaction message. The modules cover governance, staking, mint,
slashing, token price feeds and the list of enabled modules.

## Installation

```
pip install .
```

To run the tests, install the test extra and then run pytest:

```
pip install ".[test]"
pytest
```

## Overview

### Records

`bdjuno.chain_types` and `bdjuno.gov_types` define frozen dataclasses for
what gets stored. Examples:

- `Validator`
- `ValidatorStatus`
- `ValidatorVotingPower`
- `Pool`
- `TokenPrice`
- `Proposal`
- `Deposit`
- `Vote`
- `TallyResult`
- `GovParams`

`Tx` holds a transaction's height, hash, logs and messages. It provides two
lookups, `find_event_by_type` and `find_attribute_by_key`. Both raise
`LookupError` when nothing matches.

### Sources

`bdjuno.sources` defines the query interfaces that a node has to provide, as
abstract base classes:

- `GovSource`
- `MintSource`
- `SlashingSource`
- `StakingSource`

`NotFoundError` and `is_not_found` are used to recognise a missing object.

### Modules

Every module class has a `name()` method.

| Class | Name | Methods |
| --- | --- | --- |
| `bdjuno.gov.GovModule` | `gov` | `handle_genesis`, `handle_block`, `handle_msg`, `update_params`, `update_proposal` |
| `bdjuno.staking.StakingModule` | `staking` | `handle_genesis`, `handle_block`, `handle_msg`, `update_params`, `get_staking_pool`, `refresh_validator_infos`, `get_validators_with_status`, `get_validators_statuses`, `get_validators_voting_powers` |
| `bdjuno.mint.MintModule` | `mint` | `handle_genesis`, `update_params`, `update_inflation`, `register_periodic_operations` |
| `bdjuno.slashing.SlashingModule` | `slashing` | `handle_genesis`, `handle_block`, `update_params`, `get_signing_info` |
| `bdjuno.pricefeed.PricefeedModule` | `pricefeed` | `run_additional_operations`, `register_periodic_operations`, `update_price`, `update_prices_history` |
| `bdjuno.enabled_modules.EnabledModulesModule` | `modules` | `run_additional_operations` |

Each module receives a `db` object and calls plain methods on it. These are
the methods the modules call:

- **gov**
  - `get_open_proposals_ids`
  - `get_proposal`
  - `update_proposal`
  - `save_proposals`
  - `save_deposits`
  - `save_vote`
  - `save_tally_results`
  - `save_gov_params`
  - `get_last_block_height`
  - `save_proposal_staking_pool_snapshot`
  - `save_proposal_validators_statuses_snapshots`
- **staking**
  - `save_validators_data`
  - `save_validator_data`
  - `save_validator_description`
  - `save_validator_commission`
  - `save_staking_params`
  - `save_validators_statuses`
  - `save_validators_voting_powers`
  - `save_double_sign_evidence`
  - `save_staking_pool`
  - `has_validator`
- **mint**
  - `save_mint_params`
  - `get_last_block_height`
  - `save_inflation`
- **slashing**
  - `save_validators_signing_infos`
  - `save_slashing_params`
- **pricefeed**
  - `save_token`
  - `save_tokens_prices`
  - `get_tokens_price_id`
  - `save_token_prices_history`
- **modules**
  - `insert_enable_modules`

### Helpers

`bdjuno.utils` provides:

- `remove_duplicate_values`
- `unique_addresses_parser`
- `get_height_request_metadata`, which appends the `x-cosmos-block-height`
  header to gRPC metadata.
- `query_txs`, which pages through `node.tx_search` 100 results at a time.
- `read_genesis`, which reads a JSON genesis file, or asks `node.genesis()`
  when no file path is given.
- `watch_method`, which runs a callable in a daemon thread and logs any error
  it raises.
- `Scheduler`, which has `every`, `daily_at` and `run_pending`. The scheduler
  runs nothing by itself. Jobs run only when you call `run_pending`.

`bdjuno.addresses` handles bech32. It provides:

- `bech32_encode`
- `bech32_decode`
- `account_address_from_bech32`
- `convert_address_prefix`
- `consensus_address_from_bytes`
- `filter_non_account_addresses`

### Network clients

`bdjuno.coingecko` fetches market data over HTTP with `get_coins_list` and
`get_tokens_prices`. It also provides `convert_coingecko_prices`, which
truncates market caps to integers.

`bdjuno.keybase.get_avatar_url` looks up a validator's avatar over HTTP. It
returns `""` in these cases:

- the identity is shorter than 16 characters;
- no picture is found.

It raises `KeybaseError` when the service reports an error.

## Example

```python
from bdjuno.utils import remove_duplicate_values
from bdjuno.addresses import filter_non_account_addresses

remove_duplicate_values(["a", "b", "a"])          # ["a", "b"]
filter_non_account_addresses([
    "cosmos1hafptm4zxy5nw8rd2pxyg83c5ls2v62tstzuv2",
    "cosmosvaloper1hafptm4zxy5nw8rd2pxyg83c5ls2v62t4lkfqe",
])                                                # only the account address
```

The price feed is configured in YAML, under a `pricefeed` key:

```yaml
pricefeed:
  tokens:
    - name: Atom
      units:
        - denom: uatom
          exponent: 0
        - denom: atom
          exponent: 6
          price_id: cosmos
```

```python
from bdjuno.pricefeed import PricefeedModule, parse_config

with open("config.yaml", "rb") as f:
    data = f.read()

config = parse_config(data)        # None when there is no "pricefeed" section
module = PricefeedModule.from_config_bytes(data, db)
module.run_additional_operations() # stores the tokens and a zero price per priced unit
```

## What this package does not do

- **No database layer.** Every module expects a `db` object that you supply,
  with the methods listed above.
- **No node connection.** `bdjuno.sources` contains only abstract interfaces.
  A local or remote node client has to implement them.
- **No command and no main loop.** Nothing fetches blocks or feeds them to the
  modules, and there is no registry that builds the modules together.
- **No modules for auth, bank, distribution or fee grants.** Their records
  appear in `bdjuno.chain_types`. The governance module only calls
  `refresh_accounts` and `update_params` on the collaborators you pass in.