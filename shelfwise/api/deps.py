from fastapi import Request

from shelfwise.services.recommendation_service import RecommendationService


def get_recommendation_service(request: Request) -> RecommendationService:
    """The process-wide service created in the application lifespan."""
    return request.app.state.recommendations
