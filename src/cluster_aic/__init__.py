"""cluster-aic - compare clusterings by the sum of per-variable model AICs."""

__version__ = "0.1.0"

from cluster_aic.characteristic import get_characteristic as get_characteristic
from cluster_aic.families import ModelFamily as ModelFamily
from cluster_aic.families import fit_column as fit_column
from cluster_aic.families import register_family as register_family
from cluster_aic.families import resolve_family as resolve_family
from cluster_aic.merge import MergeLabelAllocator as MergeLabelAllocator
from cluster_aic.merge import merge_clusters as merge_clusters
from cluster_aic.models import AicSumTable as AicSumTable
from cluster_aic.models import CharacteristicTable as CharacteristicTable
from cluster_aic.models import Clustering as Clustering
from cluster_aic.models import DataMatrix as DataMatrix
from cluster_aic.models import FitFailure as FitFailure
from cluster_aic.models import FitResult as FitResult
from cluster_aic.models import MergeSequence as MergeSequence
from cluster_aic.optimal import find_optimal as find_optimal
from cluster_aic.partitions import enumerate_partitions as enumerate_partitions
from cluster_aic.scoring import aggregate as aggregate
from cluster_aic.scoring import delta_aic as delta_aic
from cluster_aic.scoring import score_clustering as score_clustering
