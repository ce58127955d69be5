"""Employer scan schema: runs, prompts, responses, reports, frozen sets, history, mentions, costs

Revision ID: d1e4f6a2b8c3
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'd1e4f6a2b8c3'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

NOW = sa.text('(CURRENT_TIMESTAMP)')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('monitored_domains',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Text(), nullable=True),
        sa.Column('domain', sa.Text(), nullable=False),
        sa.Column('company_name', sa.Text(), nullable=True),
        sa.Column('is_primary', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'domain', name='uq_monitored_domain_org_domain'),
    )
    op.create_index('ix_monitored_domains_organization_id', 'monitored_domains', ['organization_id'])

    op.create_table('scan_runs',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), nullable=True),
        sa.Column('monitored_domain_id', sa.Integer(), sa.ForeignKey('monitored_domains.id'), nullable=True),
        sa.Column('domain', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('progress', sa.Integer(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('completed_steps', sa.JSON(), nullable=True),
        sa.Column('step_outputs', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scan_runs_organization_id', 'scan_runs', ['organization_id'])
    op.create_index('ix_scan_runs_monitored_domain_id', 'scan_runs', ['monitored_domain_id'])

    op.create_table('site_analyses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.Text(), sa.ForeignKey('scan_runs.id'), nullable=False),
        sa.Column('business_name', sa.Text(), nullable=False),
        sa.Column('business_type', sa.Text(), nullable=True),
        sa.Column('industry', sa.Text(), nullable=True),
        sa.Column('location', sa.Text(), nullable=True),
        sa.Column('roles', sa.JSON(), nullable=True),
        sa.Column('culture_keywords', sa.JSON(), nullable=True),
        sa.Column('detected_job_families', sa.JSON(), nullable=True),
        sa.Column('raw_content', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id'),
    )

    op.create_table('scan_prompts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.Text(), sa.ForeignKey('scan_runs.id'), nullable=False),
        sa.Column('prompt_text', sa.Text(), nullable=False),
        sa.Column('category', sa.Text(), nullable=False),
        sa.Column('job_family', sa.Text(), nullable=True),
        sa.Column('source', sa.Text(), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scan_prompts_run_id', 'scan_prompts', ['run_id'])

    op.create_table('llm_responses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.Text(), sa.ForeignKey('scan_runs.id'), nullable=False),
        sa.Column('prompt_id', sa.Integer(), sa.ForeignKey('scan_prompts.id'), nullable=False),
        sa.Column('platform', sa.Text(), nullable=False),
        sa.Column('response_text', sa.Text(), nullable=True),
        sa.Column('domain_mentioned', sa.Boolean(), nullable=True),
        sa.Column('mention_position', sa.Integer(), nullable=True),
        sa.Column('competitors_mentioned', sa.JSON(), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('search_enabled', sa.Boolean(), nullable=True),
        sa.Column('sources', sa.JSON(), nullable=True),
        sa.Column('job_family', sa.Text(), nullable=True),
        sa.Column('tier', sa.Text(), nullable=True),
        sa.Column('specificity_score', sa.Integer(), nullable=True),
        sa.Column('confidence_score', sa.Integer(), nullable=True),
        sa.Column('topics_mentioned', sa.JSON(), nullable=True),
        sa.Column('positive_highlights', sa.JSON(), nullable=True),
        sa.Column('negative_highlights', sa.JSON(), nullable=True),
        sa.Column('red_flags', sa.JSON(), nullable=True),
        sa.Column('green_flags', sa.JSON(), nullable=True),
        sa.Column('recommendation_score', sa.Integer(), nullable=True),
        sa.Column('recommendation_summary', sa.Text(), nullable=True),
        sa.Column('hedging_level', sa.Text(), nullable=True),
        sa.Column('source_quality', sa.Text(), nullable=True),
        sa.Column('response_recency', sa.Text(), nullable=True),
        sa.Column('sentiment_score', sa.Integer(), nullable=True),
        sa.Column('sentiment_category', sa.Text(), nullable=True),
        sa.Column('sentiment_positive_phrases', sa.JSON(), nullable=True),
        sa.Column('sentiment_negative_phrases', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id', 'prompt_id', 'platform', name='uq_llm_response_run_prompt_platform'),
    )
    op.create_index('ix_llm_responses_run_id', 'llm_responses', ['run_id'])
    op.create_index('ix_llm_responses_prompt_id', 'llm_responses', ['prompt_id'])

    op.create_table('reports',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.Text(), sa.ForeignKey('scan_runs.id'), nullable=False),
        sa.Column('url_token', sa.Text(), nullable=False),
        sa.Column('visibility_score', sa.Integer(), nullable=False),
        sa.Column('platform_scores', sa.JSON(), nullable=True),
        sa.Column('top_competitors', sa.JSON(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('researchability_score', sa.Integer(), nullable=True),
        sa.Column('topics_covered', sa.JSON(), nullable=True),
        sa.Column('topics_missing', sa.JSON(), nullable=True),
        sa.Column('topics_with_confidence', sa.JSON(), nullable=True),
        sa.Column('differentiation_score', sa.Integer(), nullable=True),
        sa.Column('unique_attributes', sa.JSON(), nullable=True),
        sa.Column('generic_phrases', sa.JSON(), nullable=True),
        sa.Column('competitor_analysis', sa.JSON(), nullable=True),
        sa.Column('strategic_summary', sa.JSON(), nullable=True),
        sa.Column('role_action_plans', sa.JSON(), nullable=True),
        sa.Column('mention_stats', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id'),
        sa.UniqueConstraint('url_token'),
    )

    for table, columns in (
        ('hb_frozen_questions', [
            sa.Column('prompt_text', sa.Text(), nullable=False),
            sa.Column('category', sa.Text(), nullable=False),
            sa.Column('job_family', sa.Text(), nullable=True),
            sa.Column('source', sa.Text(), nullable=False),
        ]),
        ('hb_frozen_competitors', [
            sa.Column('name', sa.Text(), nullable=False),
            sa.Column('domain', sa.Text(), nullable=True),
            sa.Column('reason', sa.Text(), nullable=True),
        ]),
        ('hb_frozen_role_families', [
            sa.Column('family', sa.Text(), nullable=False),
            sa.Column('display_name', sa.Text(), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('source', sa.Text(), nullable=False),
        ]),
    ):
        op.create_table(table,
            sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('organization_id', sa.Text(), nullable=True),
            sa.Column('monitored_domain_id', sa.Integer(), sa.ForeignKey('monitored_domains.id'), nullable=True),
            *columns,
            sa.Column('sort_order', sa.Integer(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index(f'ix_{table}_organization_id', table, ['organization_id'])
        op.create_index(f'ix_{table}_monitored_domain_id', table, ['monitored_domain_id'])

    op.create_table('hb_score_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Text(), nullable=True),
        sa.Column('monitored_domain_id', sa.Integer(), sa.ForeignKey('monitored_domains.id'), nullable=True),
        sa.Column('report_id', sa.Integer(), sa.ForeignKey('reports.id'), nullable=False),
        sa.Column('desirability_score', sa.Integer(), nullable=True),
        sa.Column('awareness_score', sa.Integer(), nullable=True),
        sa.Column('differentiation_score', sa.Integer(), nullable=True),
        sa.Column('platform_scores', sa.JSON(), nullable=True),
        sa.Column('role_family_scores', sa.JSON(), nullable=True),
        sa.Column('competitor_rank', sa.Integer(), nullable=True),
        sa.Column('competitor_count', sa.Integer(), nullable=True),
        sa.Column('dimension_scores', sa.JSON(), nullable=True),
        sa.Column('scan_date', sa.DateTime(timezone=True), server_default=NOW, nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('report_id'),
    )
    op.create_index('ix_hb_score_history_organization_id', 'hb_score_history', ['organization_id'])
    op.create_index('ix_hb_score_history_monitored_domain_id', 'hb_score_history', ['monitored_domain_id'])

    op.create_table('hb_competitor_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Text(), nullable=True),
        sa.Column('monitored_domain_id', sa.Integer(), sa.ForeignKey('monitored_domains.id'), nullable=True),
        sa.Column('report_id', sa.Integer(), sa.ForeignKey('reports.id'), nullable=False),
        sa.Column('employer_name', sa.Text(), nullable=False),
        sa.Column('employer_domain', sa.Text(), nullable=True),
        sa.Column('is_target', sa.Boolean(), nullable=False),
        sa.Column('composite_score', sa.Float(), nullable=True),
        sa.Column('differentiation_score', sa.Integer(), nullable=True),
        sa.Column('dimension_scores', sa.JSON(), nullable=True),
        sa.Column('rank_by_composite', sa.Integer(), nullable=True),
        sa.Column('rank_by_differentiation', sa.Integer(), nullable=True),
        sa.Column('scan_date', sa.DateTime(timezone=True), server_default=NOW, nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('report_id', 'employer_name', name='uq_competitor_history_report_employer'),
    )
    op.create_index('ix_hb_competitor_history_organization_id', 'hb_competitor_history', ['organization_id'])
    op.create_index('ix_hb_competitor_history_monitored_domain_id', 'hb_competitor_history',
                    ['monitored_domain_id'])
    op.create_index('ix_hb_competitor_history_report_id', 'hb_competitor_history', ['report_id'])

    op.create_table('hb_web_mentions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Text(), nullable=True),
        sa.Column('monitored_domain_id', sa.Integer(), sa.ForeignKey('monitored_domains.id'), nullable=True),
        sa.Column('run_id', sa.Text(), sa.ForeignKey('scan_runs.id'), nullable=False),
        sa.Column('report_id', sa.Integer(), sa.ForeignKey('reports.id'), nullable=True),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('url_hash', sa.Text(), nullable=False),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('snippet', sa.Text(), nullable=True),
        sa.Column('published_date', sa.Text(), nullable=True),
        sa.Column('source_type', sa.Text(), nullable=False),
        sa.Column('sentiment', sa.Text(), nullable=True),
        sa.Column('sentiment_score', sa.Float(), nullable=True),
        sa.Column('relevance_score', sa.Float(), nullable=True),
        sa.Column('key_quote', sa.Text(), nullable=True),
        sa.Column('search_query', sa.Text(), nullable=True),
        sa.Column('domain_name', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id', 'url_hash', name='uq_web_mention_run_url'),
    )
    op.create_index('ix_hb_web_mentions_organization_id', 'hb_web_mentions', ['organization_id'])
    op.create_index('ix_hb_web_mentions_run_id', 'hb_web_mentions', ['run_id'])

    op.create_table('api_costs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.Text(), nullable=True),
        sa.Column('step', sa.Text(), nullable=False),
        sa.Column('model', sa.Text(), nullable=False),
        sa.Column('input_tokens', sa.Integer(), nullable=True),
        sa.Column('output_tokens', sa.Integer(), nullable=True),
        sa.Column('total_tokens', sa.Integer(), nullable=True),
        sa.Column('cost_usd', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_api_costs_run_id', 'api_costs', ['run_id'])


def downgrade() -> None:
    """Downgrade schema."""
    for table in ('api_costs', 'hb_web_mentions', 'hb_competitor_history', 'hb_score_history',
                  'hb_frozen_role_families', 'hb_frozen_competitors', 'hb_frozen_questions',
                  'reports', 'llm_responses', 'scan_prompts', 'site_analyses', 'scan_runs',
                  'monitored_domains'):
        op.drop_table(table)
