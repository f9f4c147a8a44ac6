"""Lightweight MCP-aligned server exposing the learning layer's tools over FastAPI."""

from contextlib import asynccontextmanager
from datetime import date
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

import config
from budget_model import BudgetPredictionModel
from classifier import TransactionClassifier
from database import SqlCorpusProvider, init_db
from lifestyle_model import LifestyleSignalModel
from models import LIFESTYLE_DIM, TrainingData
from storage import KeyValueStore, get_store
from training_data import is_holiday_month


@lru_cache(maxsize=None)
def get_model_store() -> KeyValueStore:
    return get_store()


@lru_cache(maxsize=None)
def get_corpus() -> SqlCorpusProvider:
    return SqlCorpusProvider()


@lru_cache(maxsize=None)
def get_classifier() -> TransactionClassifier:
    return TransactionClassifier(get_corpus(), get_model_store())


@lru_cache(maxsize=None)
def get_lifestyle_model() -> LifestyleSignalModel:
    return LifestyleSignalModel(get_model_store())


@lru_cache(maxsize=None)
def get_budget_model() -> BudgetPredictionModel:
    return BudgetPredictionModel(get_model_store())


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.configure_logging()
    init_db()
    yield
    # Write out anything still waiting in a debounce window
    for engine in (get_classifier(), get_lifestyle_model(), get_budget_model()):
        await engine.flush()


app = FastAPI(title="Finance Learning MCP Server", version="0.2.0", lifespan=lifespan)


# --- Transaction classifier ---

class TextRequest(BaseModel):
    text: str = Field(..., description="Free-text transaction note")


@app.post("/tools/predict_category")
async def predict_category(req: TextRequest, classifier: TransactionClassifier = Depends(get_classifier)):
    result = await classifier.predict_category(req.text)
    return {"prediction": result.to_dict() if result else None}


@app.post("/tools/predict_category_alternatives")
async def predict_category_alternatives(
    req: TextRequest, classifier: TransactionClassifier = Depends(get_classifier)
):
    ranked = await classifier.predict_category_with_alternatives(req.text)
    return ranked.to_dict()


class TrainRequest(BaseModel):
    force_retrain: bool = False


@app.post("/tools/train_classifier")
async def train_classifier(req: TrainRequest, classifier: TransactionClassifier = Depends(get_classifier)):
    result = await classifier.train_model(force_retrain=req.force_retrain)
    return result.to_dict()


@app.get("/tools/classifier_status")
async def classifier_status(classifier: TransactionClassifier = Depends(get_classifier)):
    return classifier.get_status().to_dict()


@app.post("/tools/clear_classifier")
async def clear_classifier(classifier: TransactionClassifier = Depends(get_classifier)):
    await classifier.clear_model()
    return classifier.get_status().to_dict()


class RecordTransactionRequest(BaseModel):
    note: str
    category_id: str
    amount: float = 0.0
    type: str = Field("expense", pattern="^(expense|income)$")
    on: Optional[date] = Field(None, description="Transaction date, defaults to today")


@app.post("/tools/record_transaction")
async def record_transaction(
    req: RecordTransactionRequest,
    corpus: SqlCorpusProvider = Depends(get_corpus),
    classifier: TransactionClassifier = Depends(get_classifier),
):
    txn_id = corpus.record_transaction(req.note, req.category_id, req.amount, req.type, req.on)
    result = await classifier.learn_from_new_transaction(req.note, req.category_id)
    return {"transactionId": txn_id, "training": result.to_dict()}


class CorrectionRequest(BaseModel):
    text: str
    category_id: str


@app.post("/tools/record_correction")
async def record_correction(
    req: CorrectionRequest,
    corpus: SqlCorpusProvider = Depends(get_corpus),
    classifier: TransactionClassifier = Depends(get_classifier),
):
    corpus.record_correction(req.text, req.category_id)
    result = await classifier.learn_from_correction(req.text, req.category_id)
    return result.to_dict()


# --- Lifestyle signals ---

class LifestyleRequest(BaseModel):
    description: str = ""


@app.post("/tools/infer_lifestyle")
async def infer_lifestyle(req: LifestyleRequest, model: LifestyleSignalModel = Depends(get_lifestyle_model)):
    signals = await model.infer(req.description)
    return signals.to_dict()


# --- Budget prediction ---

class BudgetRequest(BaseModel):
    income: float = Field(..., gt=0, description="Monthly income in VND")
    lifestyle_signals: List[float] = Field(..., min_length=LIFESTYLE_DIM, max_length=LIFESTYLE_DIM)
    month: Optional[int] = Field(None, ge=1, le=12)
    is_holiday_season: Optional[bool] = None


def _month_and_holiday(month: Optional[int], holiday: Optional[bool]):
    month = month or date.today().month
    return month, is_holiday_month(month) if holiday is None else holiday


@app.post("/tools/predict_budget")
async def predict_budget(req: BudgetRequest, model: BudgetPredictionModel = Depends(get_budget_model)):
    month, holiday = _month_and_holiday(req.month, req.is_holiday_season)
    try:
        prediction = await model.predict(req.income, req.lifestyle_signals, month, holiday)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return prediction.to_dict()


class SuggestBudgetRequest(BaseModel):
    income: float = Field(..., gt=0)
    description: str = ""
    month: Optional[int] = Field(None, ge=1, le=12)


class SuggestBudgetResponse(BaseModel):
    signals: Dict
    prediction: Dict
    amounts: Dict[str, float]


@app.post("/tools/suggest_budget", response_model=SuggestBudgetResponse)
async def suggest_budget(
    req: SuggestBudgetRequest,
    lifestyle: LifestyleSignalModel = Depends(get_lifestyle_model),
    budget: BudgetPredictionModel = Depends(get_budget_model),
):
    month, holiday = _month_and_holiday(req.month, None)
    signals = await lifestyle.infer(req.description)
    prediction = await budget.predict(req.income, signals.to_vector(), month, holiday)
    amounts = {
        "needs": round(req.income * prediction.needs_ratio),
        "wants": round(req.income * prediction.wants_ratio),
        "savings": round(req.income * prediction.savings_ratio),
    }
    return SuggestBudgetResponse(signals=signals.to_dict(), prediction=prediction.to_dict(), amounts=amounts)


class BudgetCorrectionRequest(BudgetRequest):
    target_ratios: List[float] = Field(..., min_length=3, max_length=3)


@app.post("/tools/learn_budget_correction")
async def learn_budget_correction(
    req: BudgetCorrectionRequest, model: BudgetPredictionModel = Depends(get_budget_model)
):
    month, holiday = _month_and_holiday(req.month, req.is_holiday_season)
    data = TrainingData(
        income=req.income,
        lifestyle_signals=req.lifestyle_signals,
        target_ratios=req.target_ratios,
        month=month,
        is_holiday_season=holiday,
    )
    try:
        await model.learn_from_correction(data)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return {"status": "ok"}


@app.get("/tools/budget_training_history")
async def budget_training_history(model: BudgetPredictionModel = Depends(get_budget_model)):
    return {"history": model.get_training_history()}


@app.post("/tools/reset_budget_model")
async def reset_budget_model(model: BudgetPredictionModel = Depends(get_budget_model)):
    await model.reset()
    return {"status": "ok"}


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("mcp_server:app", host="0.0.0.0", port=8001, reload=True)
