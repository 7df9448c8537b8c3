from .config import Scenario, load_scenarios
from .evaluate import compare_models, crps_gaussian, score_predictions, summarize_scores
from .experiment import ExperimentResult, run_experiment
from .models import SpeciesTrendGAM, baseline_gam, fit_models, phylo_gam
from .reml import PenaltyBlock, REMLFit, fit_gaussian_reml
from .simulate import SimulatedData, simulate_dataset, simulate_gp, simulate_observations
from .tree import Tree, simulate_bm_trait, simulate_coalescent_tree, simulate_random_tree, simulate_tree

__version__ = "0.1.0"
