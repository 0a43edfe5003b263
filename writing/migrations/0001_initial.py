import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='WritingExercise',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('prompt_text', models.TextField(blank=True, default='', help_text='Prompt the user answered')),
                ('user_text', models.TextField(help_text='Submitted text in the target language')),
                ('word_count', models.PositiveIntegerField(default=0, help_text='Whitespace-separated word count of the text')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.ForeignKey(help_text='Author of this text', on_delete=django.db.models.deletion.CASCADE, related_name='writing_exercises', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Writing Exercise',
                'verbose_name_plural': 'Writing Exercises',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='WritingAnalysis',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('corrections', models.JSONField(default=list, help_text='Ordered corrections with category and explanation')),
                ('variant_formal', models.TextField(blank=True, default='', help_text='Formal business-register rewrite')),
                ('variant_colloquial', models.TextField(blank=True, default='', help_text='Quick-witted colloquial rewrite')),
                ('variant_sophisticated', models.TextField(blank=True, default='', help_text='Sophisticated rewrite using idioms')),
                ('suggested_idioms', models.JSONField(default=list, help_text='Idioms suggested for this text')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('exercise', models.OneToOneField(help_text='Exercise this analysis belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='analysis', to='writing.writingexercise')),
            ],
            options={
                'verbose_name': 'Writing Analysis',
                'verbose_name_plural': 'Writing Analyses',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='MistakeStat',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('pattern', models.TextField(help_text='Short description of the mistake pattern')),
                ('category', models.TextField(blank=True, default='', help_text='Category of the mistake, as reported by the analysis')),
                ('example_wrong', models.TextField(blank=True, default='', help_text='Most recent wrong example')),
                ('example_correct', models.TextField(blank=True, default='', help_text='Correction of the most recent example')),
                ('occurrences', models.PositiveIntegerField(default=1, help_text='How many analyses reported this pattern')),
                ('mastery_level', models.PositiveSmallIntegerField(default=0, help_text='Self-assessed mastery (0 = not learned, 5 = mastered)', validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(5)])),
                ('first_seen', models.DateTimeField(default=django.utils.timezone.now, help_text='When this pattern was first reported')),
                ('last_seen', models.DateTimeField(default=django.utils.timezone.now, help_text='When this pattern was last reported')),
                ('user', models.ForeignKey(help_text='User who made these mistakes', on_delete=django.db.models.deletion.CASCADE, related_name='mistake_stats', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Mistake Statistic',
                'verbose_name_plural': 'Mistake Statistics',
                'ordering': ['-occurrences', '-last_seen'],
                'indexes': [models.Index(fields=['user', 'occurrences'], name='mistake_user_occurrences_idx'), models.Index(fields=['last_seen'], name='mistake_last_seen_idx')],
                'constraints': [models.UniqueConstraint(fields=('user', 'pattern'), name='unique_mistake_pattern_per_user')],
            },
        ),
    ]
