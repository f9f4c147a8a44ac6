"""
training_data.py

Labelled examples used to bootstrap the learning layer before any real
usage data exists.

* ``SEED_CATEGORIES`` / ``SEED_TRANSACTIONS`` are a small demo ledger of
  Vietnamese transaction notes.  ``seed_db.py`` loads them so the category
  classifier has something to learn from on a fresh install.
* ``make_lifestyle_dataset`` writes short lifestyle descriptions by
  combining hand-authored phrase banks (rent, debt, savings, minimalism,
  eating out, going out, luxury spending, city) and returns them with their
  16-dim signal labels.
* ``make_budget_dataset`` crosses income brackets, six lifestyle archetypes
  and the twelve months into needs/wants/savings targets, then appends a
  jittered copy of every row.

Feel free to extend the phrase banks; the networks are retrained from
scratch whenever their persisted weights are cleared.
"""

import random
from typing import List, Optional, Sequence, Tuple

import config
from models import LifestyleSignals, TrainingData

SEED_CATEGORIES = [
    # (id, name, type, icon)
    ("cat_food", "Ăn uống", "expense", "🍜"),
    ("cat_transport", "Di chuyển", "expense", "🚕"),
    ("cat_shopping", "Mua sắm", "expense", "🛍️"),
    ("cat_bills", "Hóa đơn", "expense", "💡"),
    ("cat_entertainment", "Giải trí", "expense", "🎬"),
    ("cat_health", "Sức khỏe", "expense", "💊"),
    ("cat_education", "Học tập", "expense", "📚"),
    ("cat_salary", "Lương", "income", "💰"),
]

SEED_TRANSACTIONS = [
    # (note, category_id, amount)
    # Food & drinks
    ("cà phê sáng", "cat_food", 35_000),
    ("trà sữa", "cat_food", 45_000),
    ("ăn trưa cơm tấm", "cat_food", 50_000),
    ("bún chả", "cat_food", 40_000),
    ("đi chợ mua rau", "cat_food", 120_000),
    ("nhà hàng buffet", "cat_food", 350_000),

    # Transport
    ("grab đi làm", "cat_transport", 60_000),
    ("đổ xăng", "cat_transport", 80_000),
    ("vé xe bus", "cat_transport", 7_000),
    ("taxi về nhà", "cat_transport", 150_000),

    # Shopping
    ("mua quần áo", "cat_shopping", 450_000),
    ("giày thể thao", "cat_shopping", 1_200_000),
    ("shopee đồ gia dụng", "cat_shopping", 230_000),

    # Bills & utilities
    ("tiền điện", "cat_bills", 450_000),
    ("tiền nước", "cat_bills", 120_000),
    ("internet wifi", "cat_bills", 220_000),
    ("nạp điện thoại", "cat_bills", 100_000),

    # Entertainment
    ("xem phim rạp", "cat_entertainment", 180_000),
    ("karaoke với bạn", "cat_entertainment", 400_000),
    ("netflix", "cat_entertainment", 260_000),

    # Health
    ("mua thuốc cảm", "cat_health", 90_000),
    ("khám bệnh viện", "cat_health", 500_000),

    # Education
    ("mua sách", "cat_education", 150_000),
    ("học phí khóa học tiếng anh", "cat_education", 2_500_000),

    # Income
    ("lương tháng", "cat_salary", 15_000_000),
    ("thưởng dự án", "cat_salary", 3_000_000),
]

# --- Lifestyle phrase banks ---

LOCATION_PHRASES = [
    ("ở hà nội", "hanoi"),
    ("sống hà nội", "hanoi"),
    ("ở sài gòn", "hcm"),
    ("tp hcm", "hcm"),
    ("tỉnh", "other"),
    ("quê", "other"),
]

RENT_PHRASES = ["thuê trọ", "thuê nhà", "ở chung cư", "ở căn hộ"]
DEBT_PHRASES = ["đang trả góp", "có nợ", "vay ngân hàng", "trả nợ"]
SAVINGS_PHRASES = ["muốn tiết kiệm", "đầu tư", "tích lũy", "mục tiêu mua nhà"]
MINIMAL_PHRASES = ["sống tối giản", "tiết kiệm", "đơn giản"]

FOOD_PHRASES = {
    "low": ["ăn ở nhà", "tự nấu", "ăn đơn giản"],
    "medium": ["thỉnh thoảng ăn ngoài", "đôi khi đi ăn", "1-2 lần/tuần ăn ngoài"],
    "high": ["ăn ngoài nhiều", "order đồ ăn", "đi ăn nhà hàng thường xuyên"],
}
SOCIAL_PHRASES = {
    "low": ["ít đi chơi", "ít cafe", "ít tụ tập"],
    "medium": ["thỉnh thoảng cafe", "đôi khi gặp bạn", "thi thoảng đi chơi"],
    "high": ["hay cafe", "tiệc tùng", "nhậu", "karaoke"],
}
LUXURY_PHRASES = {
    "low": ["không mua sắm", "ít shopping", "không du lịch"],
    "medium": ["thỉnh thoảng mua sắm", "đôi khi du lịch", "thỉnh thoảng shopping"],
    "high": ["thích du lịch", "shopping nhiều", "mua đồ cao cấp", "du lịch nước ngoài"],
}


def _pick_level(rng: random.Random, low_cut: float, medium_cut: float) -> str:
    if rng.random() < low_cut:
        return "low"
    return "medium" if rng.random() < medium_cut else "high"


def make_lifestyle_dataset(
    n: int = config.LIFESTYLE_SYNTHETIC_SAMPLES,
    seed: Optional[int] = None,
) -> Tuple[List[str], List[List[float]]]:
    """Generate ``n`` (description, 16-dim label) pairs."""
    rng = random.Random(seed)
    texts: List[str] = []
    labels: List[List[float]] = []

    for _ in range(n):
        location_phrase, location = rng.choice(LOCATION_PHRASES)
        signals = LifestyleSignals(
            has_rent=rng.random() < 0.55,
            has_debt=rng.random() < 0.35,
            has_savings_goal=rng.random() < 0.45,
            minimal_living=rng.random() < 0.25,
            food_out_frequency=_pick_level(rng, 0.25, 0.6),
            social_spending=_pick_level(rng, 0.35, 0.7),
            luxury_interest=_pick_level(rng, 0.35, 0.7),
            location=location,
        )

        parts = [location_phrase]
        if signals.has_rent:
            parts.append(rng.choice(RENT_PHRASES))
        if signals.has_debt:
            parts.append(rng.choice(DEBT_PHRASES))
        if signals.has_savings_goal:
            parts.append(rng.choice(SAVINGS_PHRASES))
        if signals.minimal_living:
            parts.append(rng.choice(MINIMAL_PHRASES))
        parts.append(rng.choice(FOOD_PHRASES[signals.food_out_frequency]))
        parts.append(rng.choice(SOCIAL_PHRASES[signals.social_spending]))
        parts.append(rng.choice(LUXURY_PHRASES[signals.luxury_interest]))

        texts.append(", ".join(parts))
        labels.append(signals.to_vector())

    return texts, labels


# --- Budget archetypes ---

INCOME_BRACKETS = [
    5_000_000, 8_000_000, 10_000_000, 15_000_000, 20_000_000, 30_000_000, 50_000_000,
]

BUDGET_ARCHETYPES = [
    # (name, signals, [needs, wants, savings])
    ("Minimal Living",
     LifestyleSignals(has_rent=True, minimal_living=True, location="other"),
     [0.6, 0.2, 0.2]),
    ("Balanced Lifestyle",
     LifestyleSignals(has_rent=True, food_out_frequency="medium", social_spending="medium",
                      luxury_interest="medium", location="hanoi"),
     [0.5, 0.3, 0.2]),
    ("Active Social",
     LifestyleSignals(has_rent=True, food_out_frequency="high", social_spending="high",
                      luxury_interest="medium", location="hcm"),
     [0.45, 0.4, 0.15]),
    ("Saving Focus",
     LifestyleSignals(has_savings_goal=True, location="other"),
     [0.4, 0.25, 0.35]),
    ("High Earner Lifestyle",
     LifestyleSignals(has_rent=True, food_out_frequency="high", social_spending="high",
                      luxury_interest="high", location="hcm"),
     [0.4, 0.45, 0.15]),
    ("Debt Repayment",
     LifestyleSignals(has_rent=True, has_debt=True, location="hanoi"),
     [0.65, 0.15, 0.2]),
]


def is_holiday_month(month: int) -> bool:
    return month in config.HOLIDAY_MONTHS


def normalize_ratios(ratios: Sequence[float]) -> List[float]:
    total = sum(ratios)
    if total <= 0:
        raise ValueError("Ratios must have a positive sum")
    return [r / total for r in ratios]


def make_budget_dataset(seed: Optional[int] = None) -> List[TrainingData]:
    """Income brackets x archetypes x months, plus one noised copy of each."""
    rng = random.Random(seed)
    data: List[TrainingData] = []

    for income in INCOME_BRACKETS:
        for _, signals, ratios in BUDGET_ARCHETYPES:
            vector = signals.to_vector()
            for month in range(1, 13):
                holiday = is_holiday_month(month)
                needs, wants, savings = ratios
                if income < 8_000_000:
                    # Low income: higher needs
                    needs = min(needs + 0.1, 0.7)
                    savings = max(savings - 0.05, 0.1)
                elif income > 25_000_000:
                    wants += 0.05
                    needs -= 0.05

                if holiday:
                    wants += 0.05
                    savings -= 0.05

                data.append(TrainingData(
                    income=income,
                    lifestyle_signals=list(vector),
                    target_ratios=normalize_ratios([needs, wants, savings]),
                    month=month,
                    is_holiday_season=holiday,
                ))

    noisy: List[TrainingData] = []
    for sample in data:
        jittered = [
            max(0.1, min(0.7, r + (rng.random() - 0.5) * 0.05))  # ±2.5%
            for r in sample.target_ratios
        ]
        noisy.append(TrainingData(
            income=sample.income * (0.9 + rng.random() * 0.2),  # ±10%
            lifestyle_signals=list(sample.lifestyle_signals),
            target_ratios=normalize_ratios(jittered),
            month=sample.month,
            is_holiday_season=sample.is_holiday_season,
        ))

    return data + noisy
