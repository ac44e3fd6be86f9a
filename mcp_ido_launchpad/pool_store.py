import json
from pathlib import Path
from typing import Dict, Union

from pydantic import ValidationError

from mcp_ido_launchpad.schemas import Pool
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class PoolStore:
    """
    JSON snapshot store of pools, one ``<pool_id>.json`` file per pool.

    The launchpad writes a snapshot after every committed mutation and reads
    them all back on start. A relative directory is resolved against the
    current working directory.
    """

    def __init__(self, state_dir: Union[str, Path]):
        self.state_dir = Path(state_dir)

    def path_for(self, pool_id: str) -> Path:
        return self.state_dir / f"{pool_id}.json"

    def save(self, pool: Pool) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        file_path = self.path_for(pool.pool_id)
        tmp_path = file_path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(pool.model_dump(mode="json"), f, indent=4)
        tmp_path.replace(file_path)
        logger.debug(f"Saved snapshot of pool {pool.pool_id} to {file_path}")

    def load_all(self) -> Dict[str, Pool]:
        """
        Loads every valid pool snapshot in the state directory.

        Malformed files, files failing validation and files whose name does not
        match the pool id inside are skipped with a logged message.

        Returns:
            A dictionary mapping pool_id to the restored Pool.
        """
        loaded: Dict[str, Pool] = {}
        if not self.state_dir.is_dir():
            logger.info(f"Pool state directory not found: {self.state_dir}. No pools loaded.")
            return loaded

        for file_path in sorted(self.state_dir.glob("*.json")):
            try:
                with open(file_path, "r") as f:
                    pool = Pool.model_validate(json.load(f))
            except json.JSONDecodeError:
                logger.error(f"Error decoding JSON from pool snapshot: {file_path}")
                continue
            except ValidationError as e:
                logger.error(f"Invalid pool snapshot in file {file_path}: {e}")
                continue

            if pool.pool_id != file_path.stem:
                logger.warning(f"Pool ID mismatch in {file_path}: expected '{file_path.stem}', found '{pool.pool_id}'. Skipping.")
                continue

            loaded[pool.pool_id] = pool
            logger.info(f"Successfully loaded pool snapshot: {pool.pool_id}")

        logger.info(f"Finished loading pools. Total loaded: {len(loaded)}")
        return loaded
