"""Tests for Hugging Face repository handling."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest
import requests
from huggingface_hub.utils import HfHubHTTPError

from llamaedge_run.config import SAMPLE_REPOS
from llamaedge_run.errors import SetupError
from llamaedge_run.hub import (
    WeightFile,
    build_weight_menu,
    fetch_readme,
    format_size,
    is_second_state,
    list_gguf_files,
    match_weight_type,
    normalize_repo_url,
    parse_prompt_settings,
    parse_repo_choice,
    repo_id_from_url,
    weights_url,
)

REPO = "https://huggingface.co/second-state/Llama-2-7B-Chat-GGUF"


class TestRepoChoice:
    """Test turning user answers into repository URLs."""

    def test_index_selects_sample(self):
        assert parse_repo_choice("0", SAMPLE_REPOS) == SAMPLE_REPOS[0]
        assert parse_repo_choice(" 7 ", SAMPLE_REPOS) == SAMPLE_REPOS[7]

    def test_index_out_of_range(self):
        with pytest.raises(ValueError, match="Invalid repo index"):
            parse_repo_choice(str(len(SAMPLE_REPOS)), SAMPLE_REPOS)

    def test_url_is_normalized(self):
        assert parse_repo_choice(REPO + "/tree/main", SAMPLE_REPOS) == REPO
        assert parse_repo_choice(REPO + "/", SAMPLE_REPOS) == REPO

    def test_garbage_is_rejected(self):
        with pytest.raises(ValueError, match="Invalid repo URL"):
            parse_repo_choice("llama", SAMPLE_REPOS)
        with pytest.raises(ValueError):
            parse_repo_choice("-1", SAMPLE_REPOS)

    def test_non_ascii_digits_are_rejected(self):
        with pytest.raises(ValueError, match="Invalid repo URL"):
            parse_repo_choice("\u00b2", SAMPLE_REPOS)

    def test_normalize_keeps_other_paths(self):
        assert normalize_repo_url(REPO + "/tree/dev") == REPO + "/tree/dev"


class TestRepoUrls:
    """Test URL helpers."""

    def test_repo_id(self):
        assert repo_id_from_url(REPO) == "second-state/Llama-2-7B-Chat-GGUF"
        assert repo_id_from_url(REPO + "/tree/main") == "second-state/Llama-2-7B-Chat-GGUF"

    def test_repo_id_requires_huggingface(self):
        with pytest.raises(ValueError):
            repo_id_from_url("https://example.com/second-state/model")

    def test_repo_id_requires_owner_and_name(self):
        with pytest.raises(ValueError):
            repo_id_from_url("https://huggingface.co/second-state")

    def test_weights_url(self):
        assert weights_url(REPO + "/", "model-Q4_0.gguf") == f"{REPO}/resolve/main/model-Q4_0.gguf"

    def test_weights_url_quotes_filename(self):
        assert weights_url(REPO, "my model#2.gguf") == f"{REPO}/resolve/main/my%20model%232.gguf"
        assert weights_url(REPO, "q4/model-Q4_0.gguf") == f"{REPO}/resolve/main/q4/model-Q4_0.gguf"

    def test_is_second_state(self):
        assert is_second_state(REPO)
        assert not is_second_state("https://huggingface.co/TheBloke/Llama-2-7B-Chat-GGUF")
        assert not is_second_state("https://huggingface.co/second-state-fork/model")


class TestWeightMenu:
    """Test grouping GGUF files by weight type."""

    def test_match_weight_type(self):
        assert match_weight_type("llama-2-7b-chat.Q5_K_M.gguf") == 8
        assert match_weight_type("model-q2_k.gguf") == 0
        assert match_weight_type("model-f16.gguf") is None

    def test_first_type_in_list_wins(self):
        # Q3_K_L is listed before Q3_K_M, and both contain "Q3_K"
        assert match_weight_type("model-Q3_K_L.gguf") == 1
        assert match_weight_type("model-Q3_K_M.gguf") == 2

    def test_build_menu_skips_unknown_types(self):
        files = [
            WeightFile("model-Q8_0.gguf", 7_000_000_000),
            WeightFile("model-f16.gguf", 13_000_000_000),
            WeightFile("model-Q2_K.gguf", 2_830_000_000),
        ]
        menu = build_weight_menu(files)

        assert list(menu) == [0, 11]
        assert menu[0].weight_type == "Q2_K"
        assert menu[11].file.name == "model-Q8_0.gguf"

    def test_later_file_replaces_earlier(self):
        menu = build_weight_menu([WeightFile("a-Q4_0.gguf"), WeightFile("b-Q4_0.gguf")])
        assert menu[4].file.name == "b-Q4_0.gguf"

    def test_format_size(self):
        assert format_size(4_080_000_000) == "4.08 GB"
        assert format_size(512_000_000) == "512.00 MB"
        assert format_size(None) == "?"
        assert format_size(12) == "12 B"


class TestListFiles:
    """Test listing repository files through the Hub API."""

    def test_only_gguf_files(self):
        api = MagicMock()
        api.model_info.return_value = SimpleNamespace(siblings=[
            SimpleNamespace(rfilename="README.md", size=1000),
            SimpleNamespace(rfilename="model-Q4_0.gguf", size=3_830_000_000),
            SimpleNamespace(rfilename="model-Q5_K_M.GGUF", size=4_780_000_000),
        ])

        files = list_gguf_files("second-state/model", api=api)

        api.model_info.assert_called_once_with("second-state/model", files_metadata=True)
        assert files == [
            WeightFile("model-Q4_0.gguf", 3_830_000_000),
            WeightFile("model-Q5_K_M.GGUF", 4_780_000_000),
        ]

    def test_api_error_is_setup_error(self):
        api = MagicMock()
        api.model_info.side_effect = HfHubHTTPError("404 Client Error", response=MagicMock())

        with pytest.raises(SetupError, match="second-state/missing"):
            list_gguf_files("second-state/missing", api=api)

    @pytest.mark.parametrize("error", [
        requests.ConnectionError("offline"),
        httpx.ConnectError("Name or service not known"),
        TimeoutError("timed out"),
    ])
    def test_network_error_is_setup_error(self, error):
        api = MagicMock()
        api.model_info.side_effect = error

        with pytest.raises(SetupError, match="Failed to list files"):
            list_gguf_files("second-state/model", api=api)


class TestPromptSettings:
    """Test reading prompt settings from model cards."""

    README = """
# Llama-2-7B-Chat-GGUF

## Run with LlamaEdge

- LlamaEdge version: [v0.2.8](https://github.com/second-state/LlamaEdge/releases/tag/0.2.8)

- Prompt template

  - Prompt type: `chatml`

  - Reverse prompt: `<|im_end|>`

  - Prompt string
"""

    def test_prompt_and_reverse_prompt(self):
        settings = parse_prompt_settings(self.README)

        assert settings.prompt_type == "chatml"
        assert settings.reverse_prompt == "<|im_end|>"

    def test_without_reverse_prompt(self):
        settings = parse_prompt_settings("- Prompt type: ` llama-2-chat `\n")

        assert settings.prompt_type == "llama-2-chat"
        assert settings.reverse_prompt is None

    def test_case_insensitive(self):
        assert parse_prompt_settings("PROMPT TYPE: `zephyr`").prompt_type == "zephyr"

    def test_missing_prompt_type(self):
        assert parse_prompt_settings("# A model card\n") is None
        assert parse_prompt_settings("Prompt type: chatml") is None

    def test_fetch_readme(self, tmp_path):
        readme = tmp_path / "README.md"
        readme.write_text(self.README, encoding="utf-8")

        with patch("llamaedge_run.hub.hf_hub_download", return_value=str(readme)) as mock_download:
            assert fetch_readme("second-state/model") == self.README

        mock_download.assert_called_once_with(repo_id="second-state/model", filename="README.md")

    def test_fetch_readme_missing(self):
        with patch("llamaedge_run.hub.hf_hub_download", side_effect=HfHubHTTPError("404", response=MagicMock())):
            assert fetch_readme("second-state/model") is None
