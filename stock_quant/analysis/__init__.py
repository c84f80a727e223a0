from .technical import TechnicalScorer, TechnicalSignals
from .fundamental import FundamentalScorer, FinancialRatios, IndustryComparison
from .recommendation import AnalysisScores, OverallScore, RecommendationEngine, RecommendationResult
from .prediction import PricePredictor, PricePrediction
