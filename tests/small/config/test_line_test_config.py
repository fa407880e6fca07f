"""Tests for pyproject.toml configuration loading.

The config module reads [tool.line-test] from pyproject.toml and provides
defaults when configuration is absent.
"""

from __future__ import annotations

import pytest

from line_test.config import DEFAULT_COVERAGE_COMMAND, LineTestConfig, load_config, merge_configs
from line_test.errors import ConfigError


class TestLoadConfig:
    """Tests for load_config function."""

    def test_returns_defaults_when_no_pyproject_toml(self, tmp_path):
        result = load_config(tmp_path)

        assert result == LineTestConfig()
        assert result.coverage_command == DEFAULT_COVERAGE_COMMAND

    def test_returns_defaults_when_no_tool_section(self, tmp_path):
        (tmp_path / 'pyproject.toml').write_text('[project]\nname = "x"\n')

        assert load_config(tmp_path) == LineTestConfig()

    def test_reads_all_keys(self, tmp_path):
        (tmp_path / 'pyproject.toml').write_text(
            '[tool.line-test]\n'
            'build_dir = "target"\n'
            'include = ["lib/**/*.py"]\n'
            'exclude = ["lib/vendor/**"]\n'
            'collect_command = ["tox", "-e", "collect"]\n'
            'coverage_command = ["run-one", "{test}", "{output}"]\n'
            'run_command = ["run-many", "{tests}"]\n'
            'workers = 3\n'
            'timeout = 60\n'
            'ok_exit_codes = [0, 5]\n'
        )

        result = load_config(tmp_path)

        assert result.build_dir == 'target'
        assert result.include == ('lib/**/*.py',)
        assert result.exclude == ('lib/vendor/**',)
        assert result.collect_command == ('tox', '-e', 'collect')
        assert result.coverage_command == ('run-one', '{test}', '{output}')
        assert result.run_command == ('run-many', '{tests}')
        assert result.workers == 3
        assert result.timeout == 60
        assert result.ok_exit_codes == (0, 5)

    def test_single_string_pattern_becomes_tuple(self, tmp_path):
        (tmp_path / 'pyproject.toml').write_text('[tool.line-test]\ninclude = "src/*.py"\n')

        assert load_config(tmp_path).include == ('src/*.py',)

    @pytest.mark.parametrize(
        'body',
        [
            pytest.param('colour = "blue"\n', id='unknown-key'),
            pytest.param('workers = "many"\n', id='workers-not-int'),
            pytest.param('workers = 0\n', id='workers-zero'),
            pytest.param('timeout = -1\n', id='negative-timeout'),
            pytest.param('include = [1, 2]\n', id='include-not-strings'),
            pytest.param('ok_exit_codes = ["0"]\n', id='exit-codes-not-ints'),
            pytest.param('coverage_command = ["pytest", "{output}"]\n', id='missing-test-placeholder'),
            pytest.param('coverage_command = ["pytest", "{test}"]\n', id='missing-output-placeholder'),
        ],
    )
    def test_rejects_invalid_values(self, tmp_path, body):
        (tmp_path / 'pyproject.toml').write_text('[tool.line-test]\n' + body)

        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_invalid_toml_is_a_config_error(self, tmp_path):
        (tmp_path / 'pyproject.toml').write_text('[tool.line-test\n')

        with pytest.raises(ConfigError):
            load_config(tmp_path)


class TestMergeConfigs:
    """Tests for command-line overrides."""

    def test_cli_values_override_file_values(self):
        file_config = LineTestConfig(workers=2, timeout=30)

        result = merge_configs(file_config, cli_workers=8, cli_timeout=90, cli_extra_args=['-x'])

        assert (result.workers, result.timeout, result.extra_args) == (8, 90, ('-x',))

    def test_missing_cli_values_keep_file_values(self):
        file_config = LineTestConfig(workers=2, timeout=30)

        assert merge_configs(file_config) == file_config

    def test_invalid_cli_value_is_rejected(self):
        with pytest.raises(ConfigError):
            merge_configs(LineTestConfig(), cli_workers=-1)
