from healthrocket.onboarding.tracker import OnboardingProgress, OnboardingState, OnboardingStep, OnboardingTracker

__all__ = ["OnboardingProgress", "OnboardingState", "OnboardingStep", "OnboardingTracker"]
