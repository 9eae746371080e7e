"""
User-facing message catalog.

TRANSLATIONS[language][key] is a str.format template. Components look keys up
through their _msg() helper, which falls back to English.
"""

TRANSLATIONS = {
    "en": {
        # Banner and setup
        "header": "=" * 60,
        "title": "TIMED ASSESSMENT",
        "ask_enc_pass": "Enter the key or password for '{bank}': ",
        "enc_error": "Error: A key or password is required for encrypted banks.",
        "enc_exit": "Exiting.",
        "bank_loading": "Loading question bank...",
        "bank_success": "✓ Question bank loaded",
        "bank_error": "Error: {error}",
        "bank_group": "✓ Bank: {group} ({count} questions)",
        "config_default": "Configuration loaded from {src}",
        "config_bundle": "Configuration loaded from bundle",
        "config_error": "Configuration error: {error}",
        "ask_candidate": "Candidate ID: ",
        "candidate_error": "Error: Candidate ID cannot be empty.",
        "workdir": "Working directory: {path}",
        "no_questions": "No {kind} questions are open for you right now.",
        "already_finished": "This assessment is already closed for you ({state}).",

        # Rules
        "rules_header": "RULES",
        "rules_mcq": (
            "You have {count} questions and {remaining} remaining.\n"
            "- Stay on this window. Switching tabs, leaving full-screen or pressing\n"
            "  Escape is recorded as a violation.\n"
            "- The first violation is a final warning. The next one rejects the test.\n"
            "- Answers are submitted automatically when time runs out."
        ),
        "rules_code": (
            "You have {count} problems and {remaining} remaining.\n"
            "- Switching tabs or leaving full-screen is recorded as a violation.\n"
            "- Each problem is submitted separately and cannot be changed afterwards.\n"
            "- Unsubmitted problems are submitted automatically when time runs out."
        ),
        "rules_prompt": "Do you accept these rules? (y/n): ",
        "rules_declined": "Rules not accepted. Exiting.",
        "exam_started": "Assessment started. Time remaining: {remaining}",

        # Engine messages
        "warning_low_time": "Only {seconds} seconds left! Unsubmitted work will be submitted automatically.",
        "time_expired": "Time is up. Submitting your work...",
        "warning_final": "FINAL WARNING: a violation was recorded. One more violation will reject your test.",
        "warning_rejected": "Your test has been rejected due to repeated violations.",
        "violation_visibility_hidden": "Warning: Tab switch detected. Please return to full-screen mode.",
        "violation_focus_lost": "Warning: Window lost focus. Please return to full-screen mode.",
        "violation_fullscreen_exit": "Warning: You exited full-screen mode. Use 'resume' to continue.",
        "violation_escape_key": "Warning: Escape key pressed. Please return to full-screen mode.",
        "submission_failed": "Submission failed: {error}",
        "submission_failed_retry": "Some answers could not be saved. Use 'retry' to try again.",
        "exam_not_running": "Exam is not running",
        "no_question_loaded": "No question loaded",

        # Grader
        "grader_running_tests": "Running {total} test(s)...",
        "grader_test_passed": "  Test {num}: PASSED",
        "grader_test_failed_error": "  Test {num}: FAILED (error)",
        "grader_test_failed_wrong": "  Test {num}: FAILED (wrong output)",
        "grader_error_label": "    Error: {text}",
        "grader_input_label": "    Input: {text}",
        "grader_expected_output": "    Expected: {output}",
        "grader_student_output": "    Your output: {output}",
        "grader_result_summary": "Result: {passed}/{total} passed ({percentage}%)",

        # Command loop
        "cmd_help_text": "Type 'help' for the list of commands.",
        "cmd_help_mcq": (
            "Commands:\n"
            "  {questions}        Show a question\n"
            "  next / prev        Move between questions\n"
            "  answer <qN> <X>    Select option X (letter or text)\n"
            "  submit             Submit all answers\n"
            "  status             Show answered questions and violations\n"
            "  time               Show remaining time\n"
            "  resume             Return to full-screen mode\n"
            "  dismiss            Hide the current warning\n"
            "  retry              Retry a failed submission\n"
            "  exit               Leave without submitting"
        ),
        "cmd_help_code": (
            "Commands:\n"
            "  {questions}        Show a problem and its code file\n"
            "  next / prev        Move between problems\n"
            "  lang <qN> <lang>   Switch language (python, javascript)\n"
            "  run <qN> [file]    Run your code on custom input\n"
            "  test <qN>          Run the test cases without submitting\n"
            "  submit <qN>        Submit a problem (final)\n"
            "  status             Show submitted problems and violations\n"
            "  time               Show remaining time\n"
            "  resume             Return to full-screen mode\n"
            "  dismiss            Hide the current warning\n"
            "  retry              Retry a failed submission\n"
            "  exit               Leave; submitted problems stay submitted"
        ),
        "cmd_unknown": "Unknown command: '{command}'. Type 'help' for a list of commands.",
        "cmd_interrupt": "Use 'exit' to leave the session.",
        "cmd_error": "An unexpected error occurred: {error}",
        "cmd_press_enter": "Press Enter to continue.",
        "cmd_question_invalid": "Invalid question '{qn}'. Valid questions: {valid_questions}",
        "cmd_retry_hint": "Time is up but some work is not saved yet. Type 'retry'.",
        "cmd_retry_ok": "✓ All work saved.",
        "cmd_time_heading": "Time remaining: {remaining}",
        "cmd_time_elapsed": "Time elapsed: {elapsed}",
        "cmd_show_heading": "{qn}: {title} [{difficulty}]",
        "cmd_show_constraints": "Constraints:",
        "cmd_show_sample_input": "Sample input:",
        "cmd_show_sample_output": "Sample output:",
        "cmd_show_explanation": "Explanation: {text}",
        "cmd_show_code_file": "Write your {language} solution in: {path}",
        "cmd_show_submitted": "Already submitted.",
        "cmd_answer_usage": "Usage: answer <qN> <option>",
        "cmd_answer_saved": "✓ {qn}: {option}",
        "cmd_answer_rejected": "Answer not accepted for {qn}.",
        "cmd_lang_usage": "Usage: lang <qN> <language>. Available: {languages}",
        "cmd_lang_set": "✓ {qn} now uses {language}. Code file: {path}",
        "cmd_run_input_prompt": "Enter input (finish with an empty line):",
        "cmd_run_stdout": "Output:",
        "cmd_run_stderr": "Errors:",
        "cmd_run_status": "Status: {status} ({elapsed}s)",
        "cmd_run_not_ready": "The interpreter is still loading. Try again in a moment.",
        "cmd_test_unavailable": "Nothing to run: the exam is not running or the question is not a coding problem.",
        "cmd_submit_start": "Submitting {qn}...",
        "cmd_submit_confirm": "Submit all answers now? {unanswered} unanswered. (y/n): ",
        "cmd_submit_result": "Result: {result} - {passed}/{total} tests passed ({percentage}%)",
        "cmd_submit_mcq_saved": "✓ Answers submitted.",
        "cmd_status_header": "Candidate {candidate} - {state}",
        "cmd_status_done": "done",
        "cmd_status_missing": "not yet",
        "cmd_status_violations": "Violations: {count}",
        "cmd_status_warning": "Warning: {message}",
        "cmd_exit_message": "Session closed. Run the command again to resume.",
        "final_submitted": "✓ Assessment complete. Time spent: {elapsed}",
        "final_rejected": "Assessment rejected after {violations} violation(s).",
    },
    "fr": {
        "header": "=" * 60,
        "title": "ÉVALUATION CHRONOMÉTRÉE",
        "ask_enc_pass": "Entrez la clé ou le mot de passe pour '{bank}' : ",
        "enc_error": "Erreur : une clé ou un mot de passe est requis pour les banques chiffrées.",
        "enc_exit": "Fin.",
        "bank_loading": "Chargement de la banque de questions...",
        "bank_success": "✓ Banque de questions chargée",
        "bank_error": "Erreur : {error}",
        "bank_group": "✓ Banque : {group} ({count} questions)",
        "config_default": "Configuration chargée depuis {src}",
        "config_bundle": "Configuration chargée depuis le paquet",
        "config_error": "Erreur de configuration : {error}",
        "ask_candidate": "Identifiant du candidat : ",
        "candidate_error": "Erreur : l'identifiant ne peut pas être vide.",
        "workdir": "Répertoire de travail : {path}",
        "no_questions": "Aucune question {kind} n'est ouverte pour vous en ce moment.",
        "already_finished": "Cette évaluation est déjà close pour vous ({state}).",

        "rules_header": "RÈGLES",
        "rules_mcq": (
            "Vous avez {count} questions et {remaining} restantes.\n"
            "- Restez sur cette fenêtre. Changer d'onglet, quitter le plein écran ou\n"
            "  appuyer sur Échap est enregistré comme une infraction.\n"
            "- La première infraction est un dernier avertissement. La suivante rejette le test.\n"
            "- Les réponses sont soumises automatiquement à la fin du temps."
        ),
        "rules_code": (
            "Vous avez {count} problèmes et {remaining} restantes.\n"
            "- Changer d'onglet ou quitter le plein écran est enregistré comme une infraction.\n"
            "- Chaque problème est soumis séparément et ne peut plus être modifié ensuite.\n"
            "- Les problèmes non soumis le sont automatiquement à la fin du temps."
        ),
        "rules_prompt": "Acceptez-vous ces règles ? (o/n) : ",
        "rules_declined": "Règles non acceptées. Fin.",
        "exam_started": "Évaluation commencée. Temps restant : {remaining}",

        "warning_low_time": "Plus que {seconds} secondes ! Le travail non soumis sera soumis automatiquement.",
        "time_expired": "Le temps est écoulé. Soumission de votre travail...",
        "warning_final": "DERNIER AVERTISSEMENT : une infraction a été enregistrée. Une autre rejettera votre test.",
        "warning_rejected": "Votre test a été rejeté suite à des infractions répétées.",
        "violation_visibility_hidden": "Attention : changement d'onglet détecté. Revenez en plein écran.",
        "violation_focus_lost": "Attention : la fenêtre a perdu le focus. Revenez en plein écran.",
        "violation_fullscreen_exit": "Attention : vous avez quitté le plein écran. Tapez 'resume' pour continuer.",
        "violation_escape_key": "Attention : touche Échap pressée. Revenez en plein écran.",
        "submission_failed": "Échec de la soumission : {error}",
        "submission_failed_retry": "Certaines réponses n'ont pas pu être enregistrées. Tapez 'retry' pour réessayer.",
        "exam_not_running": "L'examen n'est pas en cours",
        "no_question_loaded": "Aucune question chargée",

        "grader_running_tests": "Exécution de {total} test(s)...",
        "grader_test_passed": "  Test {num} : RÉUSSI",
        "grader_test_failed_error": "  Test {num} : ÉCHEC (erreur)",
        "grader_test_failed_wrong": "  Test {num} : ÉCHEC (sortie incorrecte)",
        "grader_error_label": "    Erreur : {text}",
        "grader_input_label": "    Entrée : {text}",
        "grader_expected_output": "    Attendu : {output}",
        "grader_student_output": "    Votre sortie : {output}",
        "grader_result_summary": "Résultat : {passed}/{total} réussis ({percentage}%)",

        "cmd_help_text": "Tapez 'help' pour la liste des commandes.",
        "cmd_help_mcq": (
            "Commandes :\n"
            "  {questions}        Afficher une question\n"
            "  next / prev        Question suivante / précédente\n"
            "  answer <qN> <X>    Choisir l'option X (lettre ou texte)\n"
            "  submit             Soumettre toutes les réponses\n"
            "  status             Questions répondues et infractions\n"
            "  time               Temps restant\n"
            "  resume             Revenir en plein écran\n"
            "  dismiss            Masquer l'avertissement\n"
            "  retry              Réessayer une soumission échouée\n"
            "  exit               Quitter sans soumettre"
        ),
        "cmd_help_code": (
            "Commandes :\n"
            "  {questions}        Afficher un problème et son fichier de code\n"
            "  next / prev        Problème suivant / précédent\n"
            "  lang <qN> <lang>   Changer de langage (python, javascript)\n"
            "  run <qN> [fichier] Exécuter votre code sur une entrée libre\n"
            "  test <qN>          Lancer les tests sans soumettre\n"
            "  submit <qN>        Soumettre un problème (définitif)\n"
            "  status             Problèmes soumis et infractions\n"
            "  time               Temps restant\n"
            "  resume             Revenir en plein écran\n"
            "  dismiss            Masquer l'avertissement\n"
            "  retry              Réessayer une soumission échouée\n"
            "  exit               Quitter ; les problèmes soumis le restent"
        ),
        "cmd_unknown": "Commande inconnue : '{command}'. Tapez 'help' pour la liste des commandes.",
        "cmd_interrupt": "Tapez 'exit' pour quitter la session.",
        "cmd_error": "Une erreur inattendue s'est produite : {error}",
        "cmd_press_enter": "Appuyez sur Entrée pour continuer.",
        "cmd_question_invalid": "Question '{qn}' invalide. Questions valides : {valid_questions}",
        "cmd_retry_hint": "Le temps est écoulé mais du travail n'est pas encore enregistré. Tapez 'retry'.",
        "cmd_retry_ok": "✓ Tout le travail est enregistré.",
        "cmd_time_heading": "Temps restant : {remaining}",
        "cmd_time_elapsed": "Temps écoulé : {elapsed}",
        "cmd_show_heading": "{qn} : {title} [{difficulty}]",
        "cmd_show_constraints": "Contraintes :",
        "cmd_show_sample_input": "Exemple d'entrée :",
        "cmd_show_sample_output": "Exemple de sortie :",
        "cmd_show_explanation": "Explication : {text}",
        "cmd_show_code_file": "Écrivez votre solution {language} dans : {path}",
        "cmd_show_submitted": "Déjà soumis.",
        "cmd_answer_usage": "Usage : answer <qN> <option>",
        "cmd_answer_saved": "✓ {qn} : {option}",
        "cmd_answer_rejected": "Réponse non acceptée pour {qn}.",
        "cmd_lang_usage": "Usage : lang <qN> <langage>. Disponibles : {languages}",
        "cmd_lang_set": "✓ {qn} utilise maintenant {language}. Fichier : {path}",
        "cmd_run_input_prompt": "Saisissez l'entrée (terminez par une ligne vide) :",
        "cmd_run_stdout": "Sortie :",
        "cmd_run_stderr": "Erreurs :",
        "cmd_run_status": "Statut : {status} ({elapsed}s)",
        "cmd_run_not_ready": "L'interpréteur est encore en chargement. Réessayez dans un instant.",
        "cmd_test_unavailable": "Rien à exécuter : l'examen n'est pas en cours ou la question n'est pas un problème de code.",
        "cmd_submit_start": "Soumission de {qn}...",
        "cmd_submit_confirm": "Soumettre toutes les réponses maintenant ? {unanswered} sans réponse. (o/n) : ",
        "cmd_submit_result": "Résultat : {result} - {passed}/{total} tests réussis ({percentage}%)",
        "cmd_submit_mcq_saved": "✓ Réponses soumises.",
        "cmd_status_header": "Candidat {candidate} - {state}",
        "cmd_status_done": "fait",
        "cmd_status_missing": "pas encore",
        "cmd_status_violations": "Infractions : {count}",
        "cmd_status_warning": "Avertissement : {message}",
        "cmd_exit_message": "Session fermée. Relancez la commande pour reprendre.",
        "final_submitted": "✓ Évaluation terminée. Temps passé : {elapsed}",
        "final_rejected": "Évaluation rejetée après {violations} infraction(s).",
    },
}
