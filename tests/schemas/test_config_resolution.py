"""Test config resolution and validation with Pydantic."""

import pytest
from pydantic import ValidationError

from lintrace.contracts import ConfigError
from lintrace.schemas import ParamConfig, UserConfig, InternalConfig
from lintrace.schemas.resolve import resolve_config, deep_merge

pytestmark = pytest.mark.unit


class TestConfigResolution:
    """Test resolve_config() precedence and merging."""

    def test_resolve_config_all_defaults(self):
        """Resolving with no user overrides uses all ParamConfig defaults."""
        config = resolve_config(ParamConfig(), None)

        assert isinstance(config, InternalConfig)
        assert config.clustering.num_draws == 100
        assert config.clustering.k_range == (3, 4, 5, 6, 7, 8)
        assert config.curve.soft_assignment is True
        assert config.lineage.root_cluster is None
        assert config.runtime.n_jobs == 1

    def test_no_param_config_means_defaults(self):
        assert resolve_config() == resolve_config(ParamConfig(), None)

    def test_cut_height_defaults_from_stability_threshold(self):
        config = resolve_config(ParamConfig(), UserConfig(STABILITY_THRESHOLD=0.75))

        assert config.clustering.cut_height == pytest.approx(0.25)

    def test_explicit_cut_height_kept(self):
        config = resolve_config(ParamConfig(), {"clustering": {"cut_height": 0.1}})

        assert config.clustering.cut_height == pytest.approx(0.1)

    def test_user_config_overrides_param_config(self):
        """UserConfig values override ParamConfig defaults."""
        user = UserConfig(NUM_DRAWS=12, SEED=7, ROOT_CLUSTER=2)
        config = resolve_config(ParamConfig(), user)

        assert config.clustering.num_draws == 12
        assert config.clustering.seed == 7
        assert config.lineage.root_cluster == 2

    def test_nested_overrides_beat_flat_aliases(self):
        user = UserConfig(NUM_DRAWS=12, clustering={"num_draws": 30})
        config = resolve_config(ParamConfig(), user)

        assert config.clustering.num_draws == 30

    def test_modified_param_config_is_base_layer(self):
        param = ParamConfig()
        param.curve.max_iterations = 3

        config = resolve_config(param, UserConfig(SOFT_ASSIGNMENT=False))

        assert config.curve.max_iterations == 3
        assert config.curve.soft_assignment is False

    def test_dict_inputs_accepted(self):
        config = resolve_config({"clustering": {"num_draws": 5}}, {"SEED": 3})

        assert config.clustering.num_draws == 5
        assert config.clustering.seed == 3

    def test_internal_config_is_frozen(self, internal_config):
        with pytest.raises(ValidationError):
            internal_config.clustering.num_draws = 1


class TestConfigErrors:
    """Invalid values surface as ConfigError before any computation."""

    @pytest.mark.parametrize("fraction", [0.0, -0.5, 1.5])
    def test_subsample_fraction_out_of_range(self, fraction):
        with pytest.raises(ConfigError, match="subsample_fraction"):
            resolve_config(ParamConfig(), UserConfig(SUBSAMPLE_FRACTION=fraction))

    def test_empty_k_range(self):
        with pytest.raises(ConfigError, match="k_range"):
            resolve_config(ParamConfig(), UserConfig(K_RANGE=[]))

    def test_k_below_two(self):
        with pytest.raises(ConfigError, match="k_range"):
            resolve_config(ParamConfig(), UserConfig(K_RANGE=[1, 2]))

    @pytest.mark.parametrize("epsilon", [0, -1e-3])
    def test_non_positive_epsilon(self, epsilon):
        with pytest.raises(ConfigError, match="convergence_epsilon"):
            resolve_config(ParamConfig(), UserConfig(CONVERGENCE_EPSILON=epsilon))

    def test_stability_threshold_above_one(self):
        with pytest.raises(ConfigError):
            resolve_config(ParamConfig(), UserConfig(STABILITY_THRESHOLD=1.2))

    def test_root_cluster_and_candidates_are_exclusive(self):
        user = UserConfig(ROOT_CLUSTER=0, lineage={"root_candidates": [1, 2]})
        with pytest.raises(ConfigError, match="either root_cluster or root_candidates"):
            resolve_config(ParamConfig(), user)

    def test_root_cannot_be_end_cluster(self):
        with pytest.raises(ConfigError, match="end_clusters"):
            resolve_config(ParamConfig(), UserConfig(ROOT_CLUSTER=1, END_CLUSTERS=[1]))

    def test_unknown_algorithm(self):
        with pytest.raises(ConfigError):
            resolve_config(ParamConfig(), UserConfig(BASE_ALGORITHM="dbscan"))

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            resolve_config(ParamConfig(), UserConfig(NUM_DRAWS=0))


class TestDeepMerge:

    def test_nested_merge(self):
        base = {"a": 1, "b": {"c": 2, "d": 3}}
        override = {"b": {"d": 4, "e": 5}, "f": 6}

        assert deep_merge(base, override) == {"a": 1, "b": {"c": 2, "d": 4, "e": 5}, "f": 6}

    def test_base_not_mutated(self):
        base = {"b": {"c": 2}}
        deep_merge(base, {"b": {"c": 3}})

        assert base == {"b": {"c": 2}}

    def test_later_overrides_win(self):
        assert deep_merge({"a": 1}, {"a": 2}, {"a": 3}) == {"a": 3}
