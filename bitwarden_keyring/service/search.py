"""Search helpers shared by ``Service.SearchItems`` and ``Collection.SearchItems``."""
import asyncio
import logging

from .. import mapping
from ..vault.types import ItemType

logger = logging.getLogger("bwkeyring.service")


async def _export_all(items, vault_items, collection_path: str) -> list[str]:
    """Export ``vault_items`` concurrently; failed exports are skipped."""
    results = await asyncio.gather(
        *(items.get_or_create_item(v, collection_path) for v in vault_items),
        return_exceptions=True,
    )
    paths = []
    for vault_item, result in zip(vault_items, results):
        if isinstance(result, BaseException):
            logger.warning(
                "Skipping item %s: %s", vault_item.id, type(result).__name__,
            )
            continue
        item, _ = result
        paths.append(item.path)
    return paths


async def search_and_filter_items(
    vault,
    items,
    collection_path: str,
    attributes: dict[str, str],
) -> list[str]:
    """Return item paths matching ``attributes``, exporting each match.

    The vault search is narrowed by URI when the attributes describe one,
    otherwise every item is listed; results are then filtered with
    :func:`mapping.matches_attributes`.
    """
    uri = mapping.build_uri_from_attributes(attributes)
    if uri:
        found = await vault.search_items(uri)
    else:
        found = await vault.list_items()
    matched = [v for v in found if mapping.matches_attributes(v, attributes)]
    logger.debug("Search matched %d of %d item(s)", len(matched), len(found))
    return await _export_all(items, matched, collection_path)


async def get_login_item_paths(vault, items, collection_path: str) -> list[str]:
    """Return paths of every login item in the vault, exporting each."""
    found = await vault.list_items()
    logins = [v for v in found if v.type == ItemType.LOGIN]
    return await _export_all(items, logins, collection_path)
