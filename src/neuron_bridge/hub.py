"""Hugging Face Hub access for checkpoints and compiled models."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from huggingface_hub import HfApi, snapshot_download
from huggingface_hub.utils import HfHubHTTPError

from .exceptions import HubError

logger = logging.getLogger(__name__)


def resolve_model_dir(
    model_id: Union[str, Path],
    revision: Optional[str] = None,
    token: Optional[str] = None,
    cache_dir: Optional[Union[str, Path]] = None,
) -> Path:
    """Return a local directory holding the model files.

    Args:
        model_id: Local directory or Hub repository id
            (e.g., 'my-org/bert-base-neuron')
        revision: Branch, tag or commit on the Hub
        token: Hub token for private repositories
        cache_dir: Hub download cache

    Returns:
        Path to the local directory
    """
    path = Path(model_id)
    if path.is_dir():
        return path

    logger.info("Downloading %s from the Hugging Face Hub", model_id)
    local_dir = snapshot_download(
        repo_id=str(model_id),
        revision=revision,
        token=token,
        cache_dir=cache_dir,
    )
    return Path(local_dir)


def push_directory(
    save_directory: Union[str, Path],
    repository_id: str,
    private: Optional[bool] = None,
    token: Optional[str] = None,
    commit_message: str = "Upload compiled Neuron model",
    revision: Optional[str] = None,
) -> str:
    """Upload a saved model directory to a Hub repository.

    The repository is created if it does not exist yet.

    Returns:
        URL of the created commit

    Raises:
        FileNotFoundError: If save_directory does not exist
        HubError: If the Hub refuses the repository or the upload fails
    """
    save_directory = Path(save_directory)
    if not save_directory.is_dir():
        raise FileNotFoundError(f"Nothing to upload: {save_directory} is not a directory")

    api = HfApi(token=token)
    try:
        api.create_repo(repo_id=repository_id, private=private, exist_ok=True)

        logger.info("Uploading %s to %s", save_directory, repository_id)
        commit = api.upload_folder(
            folder_path=str(save_directory),
            repo_id=repository_id,
            commit_message=commit_message,
            revision=revision,
        )
    except (HfHubHTTPError, OSError) as e:
        raise HubError(f"Failed to push {save_directory} to {repository_id}: {e}") from e
    return commit.commit_url
