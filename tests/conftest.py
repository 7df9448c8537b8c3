import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402

from phylogam.config import Scenario  # noqa: E402
from phylogam.experiment import run_experiment  # noqa: E402
from phylogam.simulate import simulate_dataset  # noqa: E402

SMALL = Scenario(name="small", n_species=8, n_time=30, n_withheld=2, n_holdout=5, n_knots=8, seed=7)


@pytest.fixture(scope="session")
def small_scenario():
    return SMALL


@pytest.fixture(scope="session")
def small_sim():
    return simulate_dataset(SMALL)


@pytest.fixture(scope="session")
def default_result():
    # 12 species, 50 time points, 2 species withheld, last 5 points held out
    return run_experiment(Scenario())
