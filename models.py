"""
Data records shared by the classifier, the lifestyle model and the budget
predictor.
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Literal, Optional

Level = Literal["low", "medium", "high"]
Location = Literal["hanoi", "hcm", "other"]
SampleSource = Literal["correction", "transaction"]

LEVELS: List[str] = ["low", "medium", "high"]
LOCATIONS: List[str] = ["hanoi", "hcm", "other"]

# Layout of the 16-dim lifestyle vector:
# [0] hasRent [1] hasDebt [2] hasSavingsGoal [3] minimalLiving
# [4..6] food out  [7..9] social  [10..12] luxury  (low/medium/high)
# [13..15] location (hanoi/hcm/other)
LIFESTYLE_DIM = 16


@dataclass
class Category:
    id: str
    name: str
    icon: Optional[str] = None


@dataclass
class TrainingSample:
    text: str
    category_id: str
    source: SampleSource = "transaction"


@dataclass
class CategoryProfile:
    category_id: str
    category_name: str
    centroid: List[float]
    sample_count: int

    def to_dict(self) -> Dict:
        return {
            "categoryId": self.category_id,
            "categoryName": self.category_name,
            "centroid": self.centroid,
            "sampleCount": self.sample_count,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "CategoryProfile":
        return cls(
            category_id=data["categoryId"],
            category_name=data.get("categoryName", ""),
            centroid=list(data["centroid"]),
            sample_count=int(data.get("sampleCount", 0)),
        )


@dataclass
class PredictionResult:
    """Best category for a transaction note."""
    category_id: str
    confidence: float
    category_name: str = ""
    category_icon: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "categoryId": self.category_id,
            "confidence": self.confidence,
            "categoryName": self.category_name,
            "categoryIcon": self.category_icon,
        }


@dataclass
class CategoryPrediction:
    """Ranked suggestion; confidence is an integer percentage (0-100)."""
    category_id: str
    category_name: str
    confidence: int

    def to_dict(self) -> Dict:
        return {
            "categoryId": self.category_id,
            "categoryName": self.category_name,
            "confidence": self.confidence,
        }


@dataclass
class RankedPrediction:
    primary: CategoryPrediction
    alternatives: List[CategoryPrediction] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "primary": self.primary.to_dict(),
            "alternatives": [a.to_dict() for a in self.alternatives],
        }


@dataclass
class TrainResult:
    success: bool
    accuracy: Optional[float] = None
    samples: Optional[int] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class ModelStatus:
    is_ready: bool
    is_training: bool
    vocabulary_size: int
    num_categories: int

    def to_dict(self) -> Dict:
        return {
            "isReady": self.is_ready,
            "isTraining": self.is_training,
            "vocabularySize": self.vocabulary_size,
            "numCategories": self.num_categories,
        }


@dataclass
class LifestyleSignals:
    has_rent: bool = False
    has_debt: bool = False
    has_savings_goal: bool = False
    minimal_living: bool = False
    food_out_frequency: Level = "low"
    social_spending: Level = "low"
    luxury_interest: Level = "low"
    location: Location = "other"
    rent_estimate: int = 0

    def to_vector(self) -> List[float]:
        """Encode as the 16-dim network input (flags, then one-hot groups)."""
        vector = [
            float(self.has_rent),
            float(self.has_debt),
            float(self.has_savings_goal),
            float(self.minimal_living),
        ]
        for level in (self.food_out_frequency, self.social_spending, self.luxury_interest):
            vector.extend(1.0 if level == name else 0.0 for name in LEVELS)
        vector.extend(1.0 if self.location == name else 0.0 for name in LOCATIONS)
        return vector

    def to_dict(self) -> Dict:
        return {
            "hasRent": self.has_rent,
            "rentEstimate": self.rent_estimate,
            "foodOutFrequency": self.food_out_frequency,
            "socialSpending": self.social_spending,
            "hasSavingsGoal": self.has_savings_goal,
            "hasDebt": self.has_debt,
            "luxuryInterest": self.luxury_interest,
            "location": self.location,
            "minimalLiving": self.minimal_living,
        }


@dataclass
class BudgetPrediction:
    needs_ratio: float
    wants_ratio: float
    savings_ratio: float
    confidence: float
    model_version: str
    inference_time_ms: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "needsRatio": self.needs_ratio,
            "wantsRatio": self.wants_ratio,
            "savingsRatio": self.savings_ratio,
            "confidence": self.confidence,
            "modelVersion": self.model_version,
            "inferenceTimeMs": self.inference_time_ms,
        }


@dataclass
class TrainingData:
    """One labelled example for the budget predictor."""
    income: float
    lifestyle_signals: List[float]
    target_ratios: List[float]
    month: Optional[int] = None
    is_holiday_season: bool = False
