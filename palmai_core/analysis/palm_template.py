# palmai_core/analysis/palm_template.py
"""
The fixed output template for a palm reading.

The completion model is asked to fill this exact structure; the validator
then checks that every key below is present in its answer. Leaf values are
placeholders only (types are never checked). Sub-feature names double as the
``<reference>`` targets used inside highlight cards.
"""
from __future__ import annotations

import copy
from typing import Any, Dict, List

PALM_ANALYSIS_TEMPLATE: Dict[str, Any] = {
    "detailed_analysis": {
        "major_lines": {
            "heart_line": {
                "title": "Heart Line Analysis",
                "ending_position": "",
                "features": [],
                "emotional_nature": "",
                "relationship_patterns": "",
                "compatibility": ""
            },
            "head_line": {
                "title": "Head Line Analysis",
                "starting_position": "",
                "length": "",
                "type": [],
                "thinking_style": "",
                "decision_making": "",
                "intellectual_capacity": ""
            },
            "life_line": {
                "title": "Life Line Analysis",
                "course": "",
                "features": [],
                "vitality": "",
                "life_approach": "",
                "major_life_events": ""
            },
            "destiny_line": {
                "title": "Destiny Line Analysis",
                "presence": "",
                "start_position": "",
                "end_position": "",
                "features": [],
                "career_path": "",
                "life_purpose": ""
            },
            "worry_lines": {
                "title": "Worry Lines Analysis",
                "quantity": "",
                "stress_levels": "",
                "anxiety_tendencies": "",
                "coping_mechanisms": ""
            }
        },
        "hand_analysis": {
            "hand_type": {
                "title": "Hand Type Classification",
                "elemental_type": "",
                "detailed_type": "",
                "interpretation": "",
                "characteristics": []
            },
            "hand_physical": {
                "title": "Physical Hand Characteristics",
                "skin_texture": "",
                "palm_consistency": "",
                "hand_flexibility": "",
                "hand_size": "",
                "palm_color": "",
                "overall_interpretation": ""
            },
            "hand_quadrants": {
                "title": "Four Quadrants Energy Distribution",
                "dominant_quadrant": "",
                "energy_distribution": "",
                "personality_implications": ""
            },
            "hand_comparison": {
                "title": "Left vs Right Hand Analysis",
                "dominant_hand": "",
                "hand_differences": "",
                "interpretation": "",
                "personality_balance": ""
            }
        },
        "minor_lines_analysis": {
            "sun_line": {
                "title": "Sun Line (Apollo Line) Analysis",
                "presence": "",
                "interpretation": "",
                "fame_factor": ""
            },
            "girdle_of_venus": {
                "title": "Girdle of Venus Analysis",
                "presence": "",
                "interpretation": "",
                "artistic_nature": ""
            },
            "hepatica_line": {
                "title": "Hepatica (Health Line) Analysis",
                "presence": "",
                "interpretation": "",
                "wellness_insights": ""
            },
            "ring_of_solomon": {
                "title": "Ring of Solomon Analysis",
                "presence": "",
                "interpretation": "",
                "spiritual_insight": ""
            },
            "sympathy_line": {
                "title": "Sympathy Line Analysis",
                "presence": "",
                "interpretation": "",
                "healing_abilities": ""
            },
            "relationship_lines": {
                "title": "Relationship Lines Analysis",
                "presence": "",
                "number_of_lines": "",
                "marriage_potential": "",
                "relationship_timing": ""
            },
            "children_lines": {
                "title": "Children Lines Analysis",
                "presence": "",
                "number_of_lines": "",
                "parenting_style": "",
                "family_insights": ""
            },
            "travel_lines": {
                "title": "Travel Lines Analysis",
                "presence": "",
                "travel_frequency": "",
                "wanderlust": "",
                "significant_journeys": ""
            },
            "intuition_line": {
                "title": "Intuition Line Analysis",
                "presence": "",
                "psychic_abilities": "",
                "spiritual_connection": "",
                "inner_wisdom": ""
            },
            "medical_stigmata": {
                "title": "Medical Stigmata Analysis",
                "presence": "",
                "healing_abilities": "",
                "medical_aptitude": "",
                "service_orientation": ""
            },
            "via_lasciva": {
                "title": "Via Lasciva Analysis",
                "presence": "",
                "interpretation": "",
                "adventure_seeking": ""
            },
            "family_chain": {
                "title": "Family Chain Analysis",
                "presence": "",
                "family_bonds": "",
                "ancestral_influence": ""
            },
            "rascettes": {
                "title": "Rascettes (Bracelet Lines) Analysis",
                "presence": "",
                "number_of_lines": "",
                "health_longevity": "",
                "prosperity_signs": ""
            },
            "simian_crease": {
                "title": "Simian Crease Analysis",
                "presence": "",
                "interpretation": "",
                "personality_traits": "",
                "life_approach": ""
            }
        },
        "mounts_analysis": {
            "mount_jupiter": {
                "title": "Mount of Jupiter Analysis",
                "development": "",
                "leadership_qualities": "",
                "ambition_level": "",
                "authority_comfort": ""
            },
            "mount_saturn": {
                "title": "Mount of Saturn Analysis",
                "development": "",
                "responsibility_sense": "",
                "discipline_level": "",
                "serious_nature": ""
            },
            "mount_apollo": {
                "title": "Mount of Apollo Analysis",
                "development": "",
                "creativity_level": "",
                "self_expression": "",
                "recognition_desire": ""
            },
            "mount_mercury": {
                "title": "Mount of Mercury Analysis",
                "development": "",
                "communication_skills": "",
                "business_acumen": "",
                "adaptability": ""
            },
            "mount_venus": {
                "title": "Mount of Venus Analysis",
                "development": "",
                "love_capacity": "",
                "sensuality": "",
                "artistic_appreciation": ""
            },
            "mount_inner_mars": {
                "title": "Mount of Inner Mars Analysis",
                "development": "",
                "courage_level": "",
                "resistance_to_pressure": "",
                "assertiveness": ""
            },
            "mount_outer_mars": {
                "title": "Mount of Outer Mars Analysis",
                "development": "",
                "persistence": "",
                "determination": "",
                "defensive_nature": ""
            },
            "mount_luna": {
                "title": "Mount of Luna Analysis",
                "development": "",
                "imagination": "",
                "subconscious_connection": "",
                "emotional_depth": ""
            },
            "mount_neptune": {
                "title": "Mount of Neptune Analysis",
                "development": "",
                "spiritual_connection": "",
                "intuitive_abilities": "",
                "transformation_power": ""
            }
        },
        "finger_analysis": {
            "finger_setting": {
                "title": "Finger Setting Analysis",
                "setting_type": "",
                "stress_lines": "",
                "interpretation": "",
                "confidence_level": ""
            },
            "fingertip_shapes": {
                "title": "Fingertip Shape Analysis",
                "shape_type": "",
                "interpretation": "",
                "thinking_style": ""
            },
            "jupiter_finger": {
                "title": "Index Finger (Jupiter) Analysis",
                "length": "",
                "shape": "",
                "interpretation": "",
                "career_implications": ""
            },
            "saturn_finger": {
                "title": "Middle Finger (Saturn) Analysis",
                "length": "",
                "shape": "",
                "interpretation": "",
                "life_approach": ""
            },
            "apollo_finger": {
                "title": "Ring Finger (Apollo) Analysis",
                "length": "",
                "shape": "",
                "interpretation": "",
                "artistic_potential": ""
            },
            "mercury_finger": {
                "title": "Little Finger (Mercury) Analysis",
                "length": "",
                "shape": "",
                "interpretation": "",
                "relationship_skills": ""
            }
        },
        "fingerprint_patterns_analysis": {
            "finger_pattern_loops": {
                "title": "Loop Patterns Analysis",
                "presence": "",
                "personality_traits": "",
                "social_skills": "",
                "decision_making": ""
            },
            "finger_pattern_whorls": {
                "title": "Whorl Patterns Analysis",
                "presence": "",
                "personality_traits": "",
                "unique_perspective": "",
                "leadership_style": ""
            },
            "finger_pattern_arches": {
                "title": "Arch Patterns Analysis",
                "presence": "",
                "personality_traits": "",
                "work_ethic": "",
                "life_approach": ""
            }
        }
    },
    "overview_and_profile": {
        "personality_overview": {
            "title": "Your Personality Profile",
            "content": "",
            "traits": []
        },
        "analysis_highlights": {
            "career_card": {
                "title": "Career & Professional Life",
                "summary": "",
                "key_points": []
            },
            "life_destiny_card": {
                "title": "Life Path & Destiny",
                "summary": "",
                "key_points": []
            },
            "love_relationships_card": {
                "title": "Love & Relationships",
                "summary": "",
                "key_points": []
            },
            "health_vitality_card": {
                "title": "Health & Vitality",
                "summary": "",
                "key_points": []
            },
            "financial_prosperity_card": {
                "title": "Financial Prosperity",
                "summary": "",
                "key_points": []
            },
            "spiritual_growth_card": {
                "title": "Spiritual & Personal Growth",
                "summary": "",
                "key_points": []
            }
        }
    },
    "insights_and_summary": {
        "final_conclusion": {
            "comprehensive_summary": {
                "title": "Your Complete Palm Reading Summary",
                "overall_personality": "",
                "life_themes": [],
                "strongest_traits": [],
                "areas_for_growth": [],
                "life_path_direction": "",
                "unique_gifts": []
            }
        },
        "actionable_guidance": {
            "career_guidance": {
                "title": "Career & Professional Guidance",
                "recommended_fields": [],
                "work_style_tips": [],
                "leadership_potential": "",
                "professional_growth": ""
            },
            "relationship_guidance": {
                "title": "Relationship & Love Guidance",
                "compatibility_traits": "",
                "relationship_tips": [],
                "communication_advice": "",
                "emotional_growth": ""
            },
            "health_guidance": {
                "title": "Health & Wellness Guidance",
                "stress_management": "",
                "wellness_tips": [],
                "energy_optimization": "",
                "preventive_care": ""
            },
            "spiritual_guidance": {
                "title": "Spiritual & Personal Growth Guidance",
                "meditation_practices": "",
                "intuition_development": "",
                "personal_growth": [],
                "life_purpose": ""
            },
            "financial_guidance": {
                "title": "Financial & Prosperity Guidance",
                "money_management": "",
                "investment_style": "",
                "wealth_building": [],
                "prosperity_mindset": ""
            }
        }
    }
}

# Sections whose sub-features may be referenced as [phrase]<feature>.
REFERENCE_SECTIONS = (
    "major_lines",
    "hand_analysis",
    "minor_lines_analysis",
    "mounts_analysis",
    "finger_analysis",
    "fingerprint_patterns_analysis",
)


def feature_names() -> List[List[str]]:
    """Feature keys grouped by detailed-analysis section, in template order."""
    detailed = PALM_ANALYSIS_TEMPLATE["detailed_analysis"]
    return [list(detailed[section].keys()) for section in REFERENCE_SECTIONS]


def template_copy() -> Dict[str, Any]:
    return copy.deepcopy(PALM_ANALYSIS_TEMPLATE)
