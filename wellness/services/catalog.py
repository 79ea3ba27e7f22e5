"""Static workout, stretch and breathing catalogs offered on the activity pages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Exercise:
    id: str
    name: str
    duration: int  # seconds


@dataclass(frozen=True)
class Workout:
    id: str
    name: str
    category: str
    difficulty: str
    exercises: Tuple[Exercise, ...]

    @property
    def total_duration(self) -> int:
        return sum(exercise.duration for exercise in self.exercises)


@dataclass(frozen=True)
class Stretch:
    id: str
    name: str
    duration: int  # seconds
    target_area: str


@dataclass(frozen=True)
class BreathingPattern:
    id: str
    name: str
    inhale: int
    hold_in: int
    exhale: int
    hold_out: int
    description: str

    @property
    def cycle_seconds(self) -> int:
        return self.inhale + self.hold_in + self.exhale + self.hold_out

    @property
    def session_name(self) -> str:
        # Breathing sessions are told apart from workouts by this word in the name.
        if 'breathing' in self.name.lower():
            return self.name
        return f'{self.name} Breathing'


WORKOUTS: List[Workout] = [
    Workout('1', 'Full Body Workout', 'strength', 'intermediate', (
        Exercise('push-ups', 'Push-ups', 60),
        Exercise('squats', 'Squats', 60),
        Exercise('plank', 'Plank', 30),
        Exercise('lunges', 'Lunges', 60),
        Exercise('mountain-climbers', 'Mountain Climbers', 45),
    )),
    Workout('2', 'Upper Body Focus', 'strength', 'advanced', (
        Exercise('bicep-curls', 'Bicep Curls', 45),
        Exercise('tricep-dips', 'Tricep Dips', 45),
        Exercise('shoulder-press', 'Shoulder Press', 60),
        Exercise('pull-ups', 'Pull-ups', 30),
    )),
    Workout('3', 'Core Strength', 'core', 'beginner', (
        Exercise('crunches', 'Crunches', 60),
        Exercise('russian-twists', 'Russian Twists', 45),
        Exercise('leg-raises', 'Leg Raises', 45),
        Exercise('side-planks', 'Side Planks', 30),
    )),
    Workout('4', 'Cardio Blast', 'cardio', 'intermediate', (
        Exercise('jumping-jacks', 'Jumping Jacks', 60),
        Exercise('burpees', 'Burpees', 45),
        Exercise('high-knees', 'High Knees', 30),
        Exercise('butt-kicks', 'Butt Kicks', 30),
    )),
]

STRETCH_SEQUENCES: Dict[str, List[Stretch]] = {
    'morning': [
        Stretch('m1', 'Neck Rolls', 30, 'Neck'),
        Stretch('m2', 'Shoulder Stretch', 30, 'Shoulders'),
        Stretch('m3', 'Standing Side Bend', 40, 'Sides & Core'),
        Stretch('m4', 'Forward Fold', 45, 'Hamstrings & Back'),
    ],
    'evening': [
        Stretch('e1', "Child's Pose", 60, 'Back & Hips'),
        Stretch('e2', 'Seated Forward Bend', 45, 'Hamstrings'),
        Stretch('e3', 'Supine Twist', 60, 'Spine'),
        Stretch('e4', 'Legs Up The Wall', 90, 'Legs & Circulation'),
    ],
    'desk': [
        Stretch('d1', 'Wrist Stretches', 30, 'Wrists & Forearms'),
        Stretch('d2', 'Seated Twist', 30, 'Spine'),
        Stretch('d3', 'Neck Stretch', 30, 'Neck'),
        Stretch('d4', 'Seated Figure Four', 40, 'Hips & Glutes'),
    ],
}

BREATHING_PATTERNS: List[BreathingPattern] = [
    BreathingPattern(
        'box', 'Box Breathing', 4, 4, 4, 4,
        'Equal parts inhale, hold, exhale, and hold. Perfect for stress relief and mental clarity.',
    ),
    BreathingPattern(
        '478', '4-7-8 Breathing', 4, 7, 8, 0,
        'Inhale for 4, hold for 7, exhale for 8. Powerful technique for anxiety and sleep.',
    ),
    BreathingPattern(
        'relaxing', 'Relaxing Breath', 5, 2, 7, 0,
        'Longer exhale activates the parasympathetic nervous system for deep relaxation.',
    ),
    BreathingPattern(
        'energizing', 'Energizing Breath', 3, 1, 3, 1,
        'Quick, balanced breaths to boost energy and focus.',
    ),
]


def find_workout(workout_id: str) -> Optional[Workout]:
    return next((workout for workout in WORKOUTS if workout.id == workout_id), None)


def find_exercise(exercise_id: str) -> Optional[Exercise]:
    for workout in WORKOUTS:
        for exercise in workout.exercises:
            if exercise.id == exercise_id:
                return exercise
    return None


def find_stretch(stretch_id: str) -> Optional[Stretch]:
    for sequence in STRETCH_SEQUENCES.values():
        for stretch in sequence:
            if stretch.id == stretch_id:
                return stretch
    return None


def find_breathing_pattern(pattern_id: str) -> Optional[BreathingPattern]:
    return next((pattern for pattern in BREATHING_PATTERNS if pattern.id == pattern_id), None)
