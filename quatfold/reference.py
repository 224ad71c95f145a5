import os
import re
import time
import logging
import concurrent.futures
from typing import Dict, Iterable, Optional

import requests

from .errors import InputError, ReferenceFetchError
from .pdb_io import parse_pdb_text

logger = logging.getLogger(__name__)

RCSB_URL = "https://files.rcsb.org/download/{pdb_id}.pdb"
_PDB_ID = re.compile(r"^[0-9][A-Za-z0-9]{3}$")


def _download(pdb_id, timeout, retries, backoff, session=None):
    url = os.getenv("QUATFOLD_REFERENCE_URL", RCSB_URL).format(pdb_id=pdb_id)
    get = session.get if session is not None else requests.get
    last_error = None
    for attempt in range(max(1, retries)):
        try:
            r = get(url, timeout=timeout)
            if r.status_code == 404:
                raise ReferenceFetchError(f"{pdb_id}: not found at {url}")
            r.raise_for_status()
            return r.text
        except requests.exceptions.Timeout:
            last_error = f"request timed out after {timeout}s"
        except requests.exceptions.RequestException as e:
            last_error = str(e)
        logger.debug(f"Fetch {pdb_id} attempt {attempt + 1} failed: {last_error}")
        if attempt < retries - 1:
            time.sleep(backoff * (2 ** attempt))
    raise ReferenceFetchError(f"{pdb_id}: {last_error}")


def fetch_reference(pdb_id, timeout=30, retries=3, backoff=1.0, cache_dir=None, session=None):
    """
    Download a PDB entry and parse its backbone.

    With cache_dir set, the raw file is stored as <cache_dir>/<ID>.pdb and
    reused on later calls. Raises ReferenceFetchError on network failure and
    InputError when the downloaded text has no usable backbone atoms.
    """
    pdb_id = (pdb_id or "").strip().upper()
    if not _PDB_ID.match(pdb_id):
        raise ReferenceFetchError(f"not a PDB identifier: {pdb_id!r}")

    cached = os.path.join(cache_dir, f"{pdb_id}.pdb") if cache_dir else None
    if cached and os.path.exists(cached):
        with open(cached, "r", encoding="utf-8", errors="replace") as f:
            text = f.read()
    else:
        text = _download(pdb_id, timeout, retries, backoff, session)
        if cached:
            os.makedirs(cache_dir, exist_ok=True)
            with open(cached, "w", encoding="utf-8") as f:
                f.write(text)

    structure = parse_pdb_text(text, name=pdb_id)
    if len(structure) == 0:
        raise InputError(f"{pdb_id}: no backbone atoms in downloaded file")
    logger.info(f"Reference {pdb_id}: {len(structure)} residues")
    return structure


def fetch_references(pdb_ids: Iterable[str], max_workers=5, **kwargs) -> Dict[str, Optional[object]]:
    """Parallel fetch; failed identifiers map to None and are logged."""
    ids = list(dict.fromkeys(p.strip().upper() for p in pdb_ids if p and p.strip()))
    out = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {executor.submit(fetch_reference, p, **kwargs): p for p in ids}
        for future in concurrent.futures.as_completed(futures):
            p = futures[future]
            try:
                out[p] = future.result()
            except (ReferenceFetchError, InputError) as e:
                logger.warning(f"Reference {p} unavailable: {e}")
                out[p] = None
    return out
